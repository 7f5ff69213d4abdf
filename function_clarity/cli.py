#!/usr/bin/env python3
"""
Operator CLI.

Usage:
  # switch a deployed engine to keyless verification
  function-clarity reconfigure my-engine-function --keyless
  # switch back to a static key and block on failure
  function-clarity reconfigure my-engine-function --public-key cosign.pub --action block
  # run one verification cycle locally against an event file (uses CONFIGURATION from the env)
  function-clarity verify-event event.json
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import rewrite_function_configuration
from .error_handling import FunctionClarityError
from .utils.json_logging import configure_logging


def _mutation(args: argparse.Namespace):
    def mutate(raw: Dict[str, Any]) -> None:
        if args.keyless:
            raw["isKeyless"] = True
            raw["publicKey"] = ""
        if args.public_key:
            raw["isKeyless"] = False
            raw["publicKey"] = Path(args.public_key).read_text(encoding="utf-8")
        if args.action:
            raw["action"] = args.action
        if args.sns_topic_arn:
            raw["snsTopicArn"] = args.sns_topic_arn
        if args.include_tag_key:
            raw["includedFuncTagKeys"] = list(args.include_tag_key)
    return mutate


def cmd_reconfigure(args: argparse.Namespace) -> int:
    from .providers.lambda_adapter import LambdaFunctionAdapter

    client = LambdaFunctionAdapter(region=args.region)
    raw = rewrite_function_configuration(client, args.function, _mutation(args))
    shown = {k: v for k, v in raw.items() if k != "publicKey"}
    print(json.dumps(shown, indent=2, sort_keys=True, default=str))
    return 0


def cmd_verify_event(args: argparse.Namespace) -> int:
    from .handler import process_batch
    from .engine import VerificationEngine

    event = json.loads(Path(args.event_file).read_text(encoding="utf-8"))
    response = process_batch(event, VerificationEngine())
    print(json.dumps(response, indent=2, sort_keys=True, default=str))
    return 1 if response["batchItemFailures"] or any(r["errors"] for r in response["results"]) else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="function-clarity", description="Function signature verification engine")
    sub = parser.add_subparsers(dest="command", required=True)

    rec = sub.add_parser("reconfigure", help="Rewrite the configuration of a deployed engine function")
    rec.add_argument("function", help="Engine function name or ARN")
    mode = rec.add_mutually_exclusive_group()
    mode.add_argument("--keyless", action="store_true", help="Switch to keyless verification")
    mode.add_argument("--public-key", help="Path to a PEM public key; switches to keyed verification")
    rec.add_argument("--action", choices=["block", "alert", "allow"])
    rec.add_argument("--sns-topic-arn")
    rec.add_argument("--include-tag-key", action="append")
    rec.add_argument("--region")
    rec.set_defaults(func=cmd_reconfigure)

    ver = sub.add_parser("verify-event", help="Run verification cycles for a deployment event file")
    ver.add_argument("event_file")
    ver.set_defaults(func=cmd_verify_event)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except FunctionClarityError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
