import pytest

from function_clarity import error_handling as eh


def test_taxonomy_retryability():
    assert not eh.is_retryable(eh.MalformedEvent("x"))
    assert not eh.is_retryable(eh.InvalidConfig("x"))
    assert not eh.is_retryable(eh.ArtifactNotFound("x"))
    assert not eh.is_retryable(eh.PublishFailed("x"))
    assert eh.is_retryable(eh.ArtifactUnavailable("x"))
    assert eh.is_retryable(eh.TransparencyLogUnavailable("x"))
    assert eh.is_retryable(eh.ProviderError("x"))
    assert eh.is_retryable(eh.VerificationTimedOut("x"))
    assert not eh.is_retryable(ValueError("x"))


def test_context_is_rendered_and_not_overwritten():
    err = eh.ArtifactUnavailable("download failed", {"function_identity": "fn"})
    eh.with_context(err, function_identity="other", cycle_id="c1", unused=None)
    assert err.context == {"function_identity": "fn", "cycle_id": "c1"}
    assert str(err) == "download failed [cycle_id=c1 function_identity=fn]"


def test_wrap_provider_errors():
    @eh.wrap_provider_errors(function_identity="fn")
    def boom():
        raise RuntimeError("socket closed")

    with pytest.raises(eh.ProviderError) as exc:
        boom()
    assert exc.value.context == {"function_identity": "fn"}
    assert isinstance(exc.value.__cause__, RuntimeError)

    @eh.wrap_provider_errors(cycle_id="c")
    def not_found():
        raise eh.ArtifactNotFound("gone")

    with pytest.raises(eh.ArtifactNotFound) as exc:
        not_found()
    assert exc.value.context == {"cycle_id": "c"}
