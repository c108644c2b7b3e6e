from __future__ import annotations

import argparse
import asyncio
import logging
import os

from aiohttp import web
from dotenv import load_dotenv

from .api.catalog_api import CatalogAPI
from .api.play_api import PlayAPI
from .models import GatewaySettings
from .models.settings_models import DEFAULT_CACHE_ROOT
from .stream.script_sandbox import ScriptSandbox
from .utils.file_utils import ensure_directory
from .utils.http_client import HttpClient, UpstreamFetchError, gen_cookie
from .web.app import create_app

load_dotenv()


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    value = _env_str(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _env_float(name: str) -> float | None:
    value = _env_str(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _episode_arg(value: str) -> tuple[str, str]:
    slug, sep, episode = value.rpartition(":")
    if not sep or not slug or not episode:
        raise argparse.ArgumentTypeError("expected SLUG:EPISODE")
    return slug, episode


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    defaults = GatewaySettings()
    parser = argparse.ArgumentParser(description="Serve proxied or transmuxed HLS for catalog episodes.")
    parser.add_argument("--host", default=_env_str("HOST") or defaults.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=_env_int("PORT") or defaults.port, help="Port to listen on")
    parser.add_argument(
        "--origin-host",
        default=_env_str("ORIGIN_HOST") or defaults.origin_host,
        help="Catalog site the episodes are resolved against",
    )
    parser.add_argument(
        "--cache-root",
        default=_env_str("CACHE_ROOT") or DEFAULT_CACHE_ROOT,
        help="Directory that holds transmuxed renditions",
    )
    parser.add_argument("--static-dir", default=_env_str("STATIC_DIR") or defaults.static_dir, help="Front-end files served at /")
    parser.add_argument(
        "--min-segments",
        type=int,
        default=_env_int("PREPARE_MIN_SEGMENTS") or defaults.prepare_min_segments,
        help="Segments a transmux must write before playback is redirected to it",
    )
    parser.add_argument(
        "--ready-timeout",
        type=float,
        default=_env_float("READY_TIMEOUT") or defaults.ready_timeout,
        help="Seconds to wait for each transmux readiness phase",
    )
    parser.add_argument("--ffmpeg", default=_env_str("FFMPEG_BIN") or defaults.ffmpeg_bin, help="ffmpeg executable")
    parser.add_argument(
        "--resolve",
        type=_episode_arg,
        metavar="SLUG:EPISODE",
        help="Print the manifest URL for one episode and exit",
    )
    parser.add_argument("--audio", default="", help="Audio preference used with --resolve")
    parser.add_argument("--resolution", default="", help="Resolution preference used with --resolve")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def build_settings(args: argparse.Namespace) -> GatewaySettings:
    return GatewaySettings(
        host=args.host,
        port=args.port,
        origin_host=args.origin_host,
        cache_root=os.path.abspath(os.path.expanduser(args.cache_root)),
        static_dir=args.static_dir,
        prepare_min_segments=args.min_segments,
        ready_timeout=args.ready_timeout,
        ffmpeg_bin=args.ffmpeg,
    )


async def resolve_once(settings: GatewaySettings, slug: str, episode: str, audio: str, resolution: str) -> str:
    async with HttpClient(timeout=settings.http_timeout) as http_client:
        catalog = CatalogAPI(http_client, settings.origin_host)
        play_api = PlayAPI(http_client, catalog, ScriptSandbox(timeout=settings.sandbox_timeout))
        return await play_api.resolve_manifest_url(slug, episode, audio, resolution, gen_cookie())


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.verbose)
    settings = build_settings(args)

    if args.resolve:
        slug, episode = args.resolve
        try:
            url = asyncio.run(resolve_once(settings, slug, episode, args.audio, args.resolution))
        except UpstreamFetchError as exc:
            logging.error("%s", exc)
            raise SystemExit(1)
        if not url:
            logging.error("No manifest found for %s episode %s", slug, episode)
            raise SystemExit(1)
        print(url)
        return

    ensure_directory(settings.cache_root)
    logging.info("Listening on %s:%s", settings.host, settings.port)
    web.run_app(create_app(settings), host=settings.host, port=settings.port, print=None, access_log=None)


if __name__ == "__main__":
    main()
