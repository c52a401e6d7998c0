"""CLI entry point for whatsbot."""

from __future__ import annotations

import argparse
import asyncio
import sys

import uvicorn

from whatsbot.app import WhatsBotApp
from whatsbot.config import AppConfig, load_config
from whatsbot.core.errors import WhatsbotError
from whatsbot.log import setup_logging
from whatsbot.server import create_app


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="whatsbot",
        description="Multi-tenant WhatsApp chatbot back-end",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the webhook server"),
        ("config-check", "Validate configuration"),
        ("tenant-info", "Show the configuration of one tenant"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")
        if name == "tenant-info":
            sub.add_argument("tenant_id", help="Tenant (store) id")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "tenant-info":
        _tenant_info(args.config, args.env, args.tenant_id)
    elif args.command == "start":
        _run(args.config, args.env)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and fill in your credentials")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Environment: {config.environment}")
    where = config.storage.db_path if config.storage.backend == "sqlite" else config.aws.region
    print(f"  Storage: {config.storage.backend} ({where})")
    print(f"  WhatsApp API: {config.whatsapp.base_url}/{config.whatsapp.api_version}")
    print(f"  LLM: {config.llm.default_model} (max {config.llm.max_iterations} tool rounds)")
    if config.tenants:
        print(f"  Static tenants: {len(config.tenants)}")
        for tenant in config.tenants:
            print(f"    - {tenant.tenant_id} ({tenant.kind.value}) phone id {tenant.phone_number_id or '(none)'}")
    else:
        print(f"  Tenants: DynamoDB tables {config.aws.tenant_table} / {config.aws.store_tokens_table}")


def _mask(secret: str) -> str:
    if not secret:
        return "(not set)"
    return f"{secret[:4]}…" if len(secret) > 8 else "****"


def _tenant_info(config_path: str, env_path: str, tenant_id: str) -> None:
    """Show one tenant's resolved configuration with secrets masked."""
    config = _load(config_path, env_path)
    setup_logging("WARNING")
    whatsbot = WhatsBotApp(config)

    try:
        tenant = asyncio.run(whatsbot.config_store.get(tenant_id))
    except WhatsbotError as e:
        print(f"Tenant error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Tenant: {tenant.tenant_id}")
    print("=" * 50)
    print(f"  Kind          : {tenant.kind.value}")
    print(f"  Store name    : {tenant.store_name or '(none)'}")
    print(f"  Phone id      : {tenant.phone_number_id or '(not set)'}")
    print(f"  Owner         : {tenant.owner_number or '(none)'}")
    print(f"  WhatsApp token: {_mask(tenant.whatsapp_token)}")
    print(f"  App secret    : {_mask(tenant.app_secret)}")
    print(f"  OpenAI key    : {_mask(tenant.openai_api_key)}")
    print(f"  Model         : {tenant.openai_model} (temperature {tenant.temperature})")
    print(f"  Maps key      : {_mask(tenant.google_maps_api_key)}")
    print(f"  Currency      : {tenant.currency}")
    print(f"  Context       : {len(tenant.business_context)} chars")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and serve the webhook."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, config.log_format)
    app = create_app(WhatsBotApp(config))
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
