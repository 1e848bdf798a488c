"""
Command-line interface for the localization studio.

Stages mirror the studio workflow and hand off through files in the workdir:

  transcribe  video -> captions.json + subs.srt
  translate   captions.json -> captions.json (+ captions_source.json backup)
  dub         captions.json -> dub.wav
  render      video + captions.json [+ --dub-audio] -> <output_dir>/dubstudio_export_<ms>.<ext>
  all         every stage in one go
"""

import argparse
import asyncio
import logging
import os
import shutil
import signal
import sys

from tqdm import tqdm

from .audio import decode_audio_bytes
from .config import Settings, load_env
from .errors import OperationCancelled, StudioError
from .io_ffmpeg import ensure_dir
from .scheduler import CancelToken, ImmediateScheduler, RealtimeScheduler
from .srt_utils import read_captions_json, write_captions_json, write_srt
from .studio import Studio
from .translation import get_language_name

logger = logging.getLogger("dubstudio")

EXIT_ERROR = 1
EXIT_CANCELLED = 130


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--input_video", "--input-video", dest="input_video", required=True)
    common.add_argument("--workdir", default=None, help="Stage hand-off directory (default: $DUBSTUDIO_WORKDIR or .work)")
    common.add_argument("--stt", choices=["openai", "huggingface", "local"], default=None, help="Speech-to-text backend")
    common.add_argument("--translator", choices=["openai", "huggingface"], default=None)
    common.add_argument("--tts-provider", choices=["openai", "huggingface", "elevenlabs"], default=None)
    common.add_argument("--source-language", default=None, help="Source language code (e.g. 'en'). Auto-detected if not specified.")
    common.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    translate_opts = argparse.ArgumentParser(add_help=False)
    translate_opts.add_argument("--language", "-l", required=True, help="Target language code or name (e.g. ur-PK, Urdu)")

    render_opts = argparse.ArgumentParser(add_help=False)
    render_opts.add_argument("--dub-audio", default=None, help="Replacement soundtrack (WAV/MP3 or raw 24 kHz PCM)")
    render_opts.add_argument("--format", dest="output_format", choices=["webm", "mp4"], default=None)
    render_opts.add_argument("--output-dir", default=None)
    render_opts.add_argument("--fast", action="store_true", help="Do not pace rendering to playback speed")
    render_opts.add_argument("--font", default=None, help="TrueType font for burned-in captions")

    ap = argparse.ArgumentParser(prog="dubstudio", description="Video localization studio")
    sub = ap.add_subparsers(dest="stage", required=True)
    sub.add_parser("transcribe", parents=[common], help="Transcribe the video into captions")
    sub.add_parser("translate", parents=[common, translate_opts], help="Translate captions")
    sub.add_parser("dub", parents=[common], help="Synthesize a dubbed soundtrack from the captions")
    sub.add_parser("render", parents=[common, render_opts], help="Burn captions into the video")
    p_all = sub.add_parser("all", parents=[common, render_opts], help="Run every stage")
    p_all.add_argument("--language", "-l", default=None, help="Target language; skip translation when omitted")
    p_all.add_argument("--no-dub", action="store_true", help="Keep the original soundtrack")
    return ap.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if args.stt:
        settings.stt_provider = args.stt
    if args.translator:
        settings.translation_provider = args.translator
    if args.tts_provider:
        settings.tts_provider = args.tts_provider
    if args.source_language:
        settings.source_language = args.source_language
    if args.workdir:
        settings.workdir = args.workdir
    if getattr(args, "output_format", None):
        settings.output_format = args.output_format
    if getattr(args, "output_dir", None):
        settings.output_dir = args.output_dir
    if getattr(args, "font", None):
        settings.font_path = args.font
    return settings.validate()


def _paths(settings: Settings) -> dict[str, str]:
    ensure_dir(settings.workdir)
    return {
        "captions": os.path.join(settings.workdir, "captions.json"),
        "source": os.path.join(settings.workdir, "captions_source.json"),
        "srt": os.path.join(settings.workdir, "subs.srt"),
        "dub": os.path.join(settings.workdir, "dub.wav"),
        "audio": os.path.join(settings.workdir, "extracted.wav"),
    }


def _load_captions(studio: Studio, path: str) -> None:
    if not os.path.exists(path):
        raise StudioError(f"Captions not found: {path} (run the transcribe stage first)")
    studio.load_captions(read_captions_json(path))
    logger.info(f"Loaded captions -> {path} ({len(studio.store)} captions)")


def _save_captions(studio: Studio, paths: dict[str, str]) -> None:
    write_captions_json(studio.store, paths["captions"])
    write_srt(studio.store, paths["srt"])
    logger.info(f"Saved captions -> {paths['captions']} and {paths['srt']}")


def stage_transcribe(studio: Studio, paths: dict[str, str]) -> None:
    studio.generate_captions(audio_path=paths["audio"])
    _save_captions(studio, paths)


def stage_translate(studio: Studio, paths: dict[str, str], language: str) -> None:
    if not os.path.exists(paths["source"]):
        shutil.copyfile(paths["captions"], paths["source"])
    logger.info(f"Translating {len(studio.store)} captions to {get_language_name(language)}...")
    studio.translate(language)
    _save_captions(studio, paths)


def stage_dub(studio: Studio, paths: dict[str, str]) -> None:
    audio = studio.dub()
    audio.to_segment().export(paths["dub"], format="wav")
    logger.info(f"Exported dubbed audio -> {paths['dub']}")


async def stage_render(studio: Studio, settings: Settings, fast: bool, cancel_token: CancelToken) -> str:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel, "Interrupted")
    except (NotImplementedError, RuntimeError):
        # no loop signal handlers on this platform; KeyboardInterrupt still propagates
        pass

    scheduler = ImmediateScheduler() if fast else RealtimeScheduler()
    with tqdm(total=100, desc="Render", unit="%", bar_format="{l_bar}{bar}| {n:.0f}/{total:.0f}%") as bar:

        def on_progress(value: float) -> None:
            bar.update(value * 100 - bar.n)

        try:
            artifact = await studio.export(
                on_progress=on_progress,
                cancel_token=cancel_token,
                scheduler=scheduler,
                output_format=settings.output_format,
            )
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
    return artifact.save(settings.output_dir)


def _load_dub(studio: Studio, path: str) -> None:
    with open(path, "rb") as f:
        studio.set_dubbed_audio(decode_audio_bytes(f.read()))
    logger.info(f"Using dubbed audio -> {path}")


def run_stage(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    paths = _paths(settings)
    cancel_token = CancelToken()
    with Studio(args.input_video, settings) as studio:
        if args.stage == "transcribe":
            stage_transcribe(studio, paths)
        elif args.stage == "translate":
            _load_captions(studio, paths["captions"])
            stage_translate(studio, paths, args.language)
        elif args.stage == "dub":
            _load_captions(studio, paths["captions"])
            stage_dub(studio, paths)
        elif args.stage == "render":
            _load_captions(studio, paths["captions"])
            if args.dub_audio:
                _load_dub(studio, args.dub_audio)
            out = asyncio.run(stage_render(studio, settings, args.fast, cancel_token))
            logger.info(f"Done -> {out}")
        elif args.stage == "all":
            stage_transcribe(studio, paths)
            if args.language:
                stage_translate(studio, paths, args.language)
            if args.dub_audio:
                _load_dub(studio, args.dub_audio)
            elif not args.no_dub:
                stage_dub(studio, paths)
            out = asyncio.run(stage_render(studio, settings, args.fast, cancel_token))
            logger.info(f"Done -> {out}")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    load_env()
    args = parse_args(argv)
    setup_logging(args.verbose)
    try:
        run_stage(args)
    except (OperationCancelled, KeyboardInterrupt):
        logger.warning("Cancelled; no output was written")
        return EXIT_CANCELLED
    except (StudioError, ValueError, RuntimeError, OSError) as e:
        logger.error(f"{args.stage} failed: {e}")
        return EXIT_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
