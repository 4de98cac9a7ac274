"""
ProxiMeet CLI entrypoint.

Subcommands:
- `serve`: run the tracking server (FastAPI + WebSocket) under uvicorn
- `track`: run a client session against a server and print direction updates
- `direction`: one-shot distance/bearing/compass label between two coordinates
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from proximeet.client.geolocation import build_position_source
from proximeet.client.session import ConnectionSession
from proximeet.client.transport import WebSocketTransport
from proximeet.config.settings import get_settings
from proximeet.core.errors import ProfileLookupError
from proximeet.core.logging import configure_logging
from proximeet.core.time import now_ms
from proximeet.domain.models import Position, TrackingStatus
from proximeet.ingestion.profile_client import ProfileClient
from proximeet.tracking.direction import direction_to, format_distance

logger = logging.getLogger(__name__)


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "proximeet.api.app:app",
        host=args.host or settings.server.host,
        port=int(args.port or settings.server.port),
        log_config=None,
    )
    return 0


def _print_status(status: TrackingStatus) -> None:
    parts = [f"[{status.state.value}]"]
    if status.position is not None:
        parts.append(f"me=({status.position.latitude:.5f},{status.position.longitude:.5f}) {status.position.source.value}")
    for label, info in status.directions.items():
        if info is None:
            parts.append(f"{label}=no data")
        else:
            parts.append(f"{label}={info.target_id} {format_distance(info.distance_m)} {info.cardinal} {info.bearing_deg}deg")
    if status.error:
        parts.append(f"error={status.error}")
    print("  ".join(parts), flush=True)


async def _run_track(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.dev:
        settings = settings.model_copy(
            update={"app": settings.app.model_copy(update={"environment": "development"})}
        )
    profile = None
    if args.profile_id:
        try:
            profile = await ProfileClient(settings).get_profile(args.profile_id)
        except ProfileLookupError as exc:
            print(f"profile lookup failed: {exc}")
            return 2
    session = ConnectionSession(
        settings,
        transport=WebSocketTransport(),
        position_source=build_position_source(settings, seed=args.seed),
        profile=profile,
        user_id=args.user_id,
        url=args.url,
    )
    session.add_listener(_print_status)
    async with session:
        await session.start_tracking()
        if not session.is_tracking:
            print(f"tracking blocked: {session.error}")
            return 2
        if args.duration:
            await asyncio.sleep(float(args.duration))
        else:
            await asyncio.Event().wait()
    return 0


def _cmd_track(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_run_track(args))
    except KeyboardInterrupt:
        return 130


def _cmd_direction(args: argparse.Namespace) -> int:
    ts = now_ms()
    origin = Position(latitude=args.from_lat, longitude=args.from_lon, captured_at_ms=ts)
    target = Position(latitude=args.to_lat, longitude=args.to_lon, captured_at_ms=ts)
    info = direction_to("target", origin, target)
    if args.json:
        print(json.dumps(info.model_dump(mode="json"), indent=2))
        return 0
    print(f"{format_distance(info.distance_m)} {info.cardinal} ({info.bearing_deg} deg)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="proximeet", description="Real-time proximity tracking.")
    parser.add_argument("--log-level", default=None, help="Override the configured log level.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the tracking server.")
    p_serve.add_argument("--host", default=None)
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.set_defaults(func=_cmd_serve)

    p_track = sub.add_parser("track", help="Run a tracking client and print direction updates.")
    p_track.add_argument("--url", default=None, help="WebSocket URL (defaults to the configured endpoint).")
    p_track.add_argument("--user-id", default=None)
    p_track.add_argument("--profile-id", default=None, help="Fetch this profile for identity and the capability gate.")
    p_track.add_argument("--dev", action="store_true", help="Development mode: simulated position, open gate.")
    p_track.add_argument("--seed", type=int, default=None, help="Seed for the simulated position source.")
    p_track.add_argument("--duration", type=float, default=None, help="Stop after N seconds.")
    p_track.set_defaults(func=_cmd_track)

    p_dir = sub.add_parser("direction", help="Distance and bearing between two coordinates.")
    p_dir.add_argument("from_lat", type=float)
    p_dir.add_argument("from_lon", type=float)
    p_dir.add_argument("to_lat", type=float)
    p_dir.add_argument("to_lon", type=float)
    p_dir.add_argument("--json", action="store_true")
    p_dir.set_defaults(func=_cmd_direction)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
