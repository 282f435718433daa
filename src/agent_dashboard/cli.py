import argparse
import logging
from pathlib import Path

from agent_dashboard.app_container import build_dashboard_service
from agent_dashboard.config import DEFAULT_CONFIG_DIR, Settings, get_env_path, load_settings
from agent_dashboard.persistence.demo_seed import DEMO_OWNER_ID
from agent_dashboard.util import mask_secret


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_config(settings: Settings) -> None:
    print(f"Config dir: {settings.config_dir}")
    print(f"Env file: {get_env_path(settings.config_dir)}")
    print(f"Database: {settings.db_path}")
    print(f"API keys: {len(settings.api_keys)}")
    for token, owner in sorted(settings.api_keys.items(), key=lambda item: item[1]):
        print(f"  {mask_secret(token)} -> {owner}")
    print(f"Schedule mode: {settings.schedule_mode}")
    print(f"Log level: {settings.log_level}")
    print(
        f"Execution delay: {settings.execution_delay_min_sec:g}-{settings.execution_delay_max_sec:g}s, "
        f"success rate {settings.execution_success_rate:g}, "
        f"max concurrency {settings.execution_max_concurrency}"
    )
    timeout = f"{settings.execution_timeout_sec:g}s" if settings.execution_timeout_sec > 0 else "off"
    print(
        f"Attempts: {settings.execution_max_attempts} "
        f"(backoff {settings.execution_retry_backoff_sec:g}s), timeout {timeout}"
    )
    print(f"Seed demo data: {'yes' if settings.seed_demo_data else 'no'}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Agent dashboard API server")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory holding the .env config (default: ~/.config/agent-dashboard)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--seed-demo", action="store_true", help="Seed the demo workspace into an empty database")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host")
    parser.add_argument("--port", type=int, default=8765, help="Bind port")
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL from the config, else INFO)")

    args = parser.parse_args()
    config_dir = Path(args.config_dir).expanduser().resolve()

    settings = load_settings(config_dir)
    log_level = args.log_level or settings.log_level
    _configure_logging(log_level)
    if args.seed_demo:
        settings.seed_demo_data = True

    if args.print_config:
        _print_config(settings)
        return

    if not settings.api_keys:
        logging.getLogger(__name__).warning("DASHBOARD_API_KEYS is empty; every /api request will be rejected")

    service = build_dashboard_service(settings)

    from agent_dashboard.control_center.app import create_app
    import uvicorn

    app = create_app(
        service,
        api_keys=settings.api_keys,
        seed_demo_owner=DEMO_OWNER_ID if settings.seed_demo_data else None,
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
