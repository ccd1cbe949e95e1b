"""Command-line interface for relaying an article into a WeChat draft."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Callable, Sequence

from bs4 import BeautifulSoup

from ..core.errors import RelayError
from ..extraction.extractor import HtmlExtractor, fetch_page, page_title
from ..platforms.base import PageContext
from ..settings import AppConfig, load_config
from ..state.models import Session, WorkflowState
from ..utils.logging import configure_logging, get_logger
from .messages import CapturePayload, ContentCaptured, ExportHistoryEntry, GetSettings
from .runtime import build_service
from .service import RelayService

LOGGER = get_logger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    structured = False if args.log_plain else config.logging.structured
    configure_logging(level=config.logging.level, structured=structured)

    handler: Callable[[argparse.Namespace, AppConfig], int] | None = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return 1
    return handler(args, config)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wash-drafts", description="Relay articles into WeChat drafts")
    parser.add_argument("--config", help="Path to configuration file", default=None)
    parser.add_argument(
        "--log-plain",
        action="store_true",
        help="Use plain-text logs instead of JSON",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Extract, translate, format and publish one article")
    run_parser.add_argument("url", help="Article URL")
    run_parser.add_argument("--html-file", help="Read the page from a saved HTML file instead of fetching it")
    run_parser.add_argument("--session", help="Session key (defaults to app.default_session)")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate uploads and the draft request",
    )
    run_parser.add_argument(
        "--export",
        choices=["json", "markdown"],
        help="Print the history entry in this format after the run",
    )
    run_parser.set_defaults(handler=_handle_run)

    settings_parser = subparsers.add_parser("settings", help="Show the effective (masked) settings")
    settings_parser.set_defaults(handler=_handle_settings)

    token_parser = subparsers.add_parser("token", help="Fetch or refresh the WeChat access token")
    token_parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Ignore the cached token",
    )
    token_parser.set_defaults(handler=_handle_token)

    return parser


def _handle_run(args: argparse.Namespace, config: AppConfig) -> int:
    session_key = args.session or config.default_session
    LOGGER.info(
        "Running workflow",
        extra={"event": "cli.command", "command": "run", "url": args.url, "session": session_key},
    )
    try:
        session, exported = asyncio.run(_run_article(args, config, session_key))
    except RelayError as exc:
        LOGGER.error(
            "Workflow could not start",
            extra={"event": "cli.error", "command": "run", "error": str(exc)},
        )
        return 1

    print(json.dumps(_summary(session), ensure_ascii=False, indent=2))
    if exported is not None:
        print(exported)
    return 0 if session.workflow.status == WorkflowState.STATUS_SUCCESS else 1


async def _run_article(
    args: argparse.Namespace,
    config: AppConfig,
    session_key: str,
) -> tuple[Session, str | None]:
    service = build_service(config, dry_run=True if args.dry_run else None)
    try:
        page = await _load_page(args, config)
        items = await HtmlExtractor().extract(page)
        title = page.title or page_title(BeautifulSoup(page.html, "html.parser"))
        task = await service.handle(
            ContentCaptured(
                key=session_key,
                payload=CapturePayload(source_url=page.url, items=tuple(items), title=title),
            )
        )
        session = await task
        exported = await _export(service, session, args.export)
        return session, exported
    finally:
        service.close()


async def _load_page(args: argparse.Namespace, config: AppConfig) -> PageContext:
    if args.html_file:
        html = Path(args.html_file).read_text(encoding="utf-8")
        return PageContext(url=args.url, html=html)
    return await asyncio.to_thread(
        fetch_page,
        args.url,
        timeout=config.http.timeout,
        user_agent=config.http.user_agent,
    )


async def _export(service: RelayService, session: Session, fmt: str | None) -> str | None:
    if fmt is None or session.workflow.status != WorkflowState.STATUS_SUCCESS:
        return None
    document = await service.handle(ExportHistoryEntry(source_url=session.source_url, format=fmt))
    return document.content


def _summary(session: Session) -> dict[str, object]:
    return {
        "source_url": session.source_url,
        "title": session.title_task.text if session.title_task else session.title,
        "workflow": session.workflow.to_dict(),
        "warnings": session.workflow.warnings(),
        "uploads": len(session.wechat_uploads),
        "draft_media_id": session.wechat_draft.media_id if session.wechat_draft else None,
    }


def _handle_settings(args: argparse.Namespace, config: AppConfig) -> int:
    service = build_service(config)
    try:
        sanitized = asyncio.run(service.handle(GetSettings()))
        print(json.dumps(sanitized.to_dict(), ensure_ascii=False, indent=2))
    finally:
        service.close()
    return 0


def _handle_token(args: argparse.Namespace, config: AppConfig) -> int:
    service = build_service(config)
    try:
        result = asyncio.run(service.tokens.refresh(force_refresh=args.force_refresh))
    except RelayError as exc:
        LOGGER.error(
            "Token refresh failed",
            extra={"event": "cli.error", "command": "token", "error": str(exc)},
        )
        return 1
    finally:
        service.close()

    LOGGER.info(
        "Access token ready",
        extra={"event": "cli.command", "command": "token", "from_cache": result.from_cache},
    )
    print(result.expires_at.isoformat() if result.expires_at else "<unknown>")
    return 0


__all__ = ["main"]
