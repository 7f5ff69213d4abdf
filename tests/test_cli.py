import json

from function_clarity import cli
from function_clarity.config import ConfigResolver, Mode

from conftest import FakeFunctions


def test_reconfigure_to_keyless_and_back(monkeypatch, tmp_path, capsys, make_config, public_key_pem):
    functions = FakeFunctions()
    functions.environment["function-clarity"] = {"CONFIGURATION": make_config(publicKey=public_key_pem.decode())}
    monkeypatch.setattr("function_clarity.providers.lambda_adapter.LambdaFunctionAdapter", lambda region=None: functions)
    monkeypatch.setattr(cli, "configure_logging", lambda: None)

    assert cli.main(["reconfigure", "function-clarity", "--keyless", "--action", "alert"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["isKeyless"] is True
    assert "publicKey" not in shown
    policy = ConfigResolver(env=functions.environment["function-clarity"]).resolve()
    assert policy.mode == Mode.KEYLESS

    key_file = tmp_path / "cosign.pub"
    key_file.write_bytes(public_key_pem)
    assert cli.main(["reconfigure", "function-clarity", "--public-key", str(key_file)]) == 0
    policy = ConfigResolver(env=functions.environment["function-clarity"]).resolve()
    assert policy.mode == Mode.KEYED
    assert policy.public_key.strip() == public_key_pem.strip()


def test_reconfigure_reports_invalid_result(monkeypatch, capsys, make_config, public_key_pem):
    functions = FakeFunctions()
    functions.environment["fc"] = {"CONFIGURATION": make_config(publicKey=public_key_pem.decode())}
    monkeypatch.setattr("function_clarity.providers.lambda_adapter.LambdaFunctionAdapter", lambda region=None: functions)
    monkeypatch.setattr(cli, "configure_logging", lambda: None)

    assert cli.main(["reconfigure", "unknown-function", "--keyless"]) == 2
    assert "ERROR" in capsys.readouterr().err


def test_verify_event_file(monkeypatch, tmp_path, capsys, event_factory):
    from function_clarity.models import CycleResult

    class StubEngine:
        def run_cycle(self, event):
            return CycleResult(cycle_id="c1", skipped_reason="out of scope")

    monkeypatch.setattr("function_clarity.engine.VerificationEngine", StubEngine)
    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    event_file = tmp_path / "event.json"
    event_file.write_text(json.dumps(event_factory("arn:aws:lambda:us-east-1:1:function:a")))

    assert cli.main(["verify-event", str(event_file)]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["results"][0]["skipped"] == "out of scope"
