import argparse
import sys
from datetime import datetime
from pathlib import Path

from recent_audio_buffer.config.settings import create_example_env_file, load_config, setup_logging
from recent_audio_buffer.core.errors import CaptureStartError, PipelineCancelledError
from recent_audio_buffer.service import BufferService


def print_progress(fraction: float):
    print(f"\rTrimming silence... {int(fraction * 100):3d}%", end="", flush=True)
    if fraction >= 1.0:
        print()


def save_clip(service: BufferService, output_dir: Path) -> Path:
    job = service.submit_clip(on_progress=print_progress)
    try:
        clip = job.result()
    except KeyboardInterrupt:
        job.cancel()
        raise PipelineCancelledError("Save interrupted")
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{datetime.now().strftime('%Y%m%d_%H%M%S')}.wav"
    with open(path, "wb") as f:
        f.write(clip.wav_header())
        f.write(clip.pcm)
    label = "trimmed" if clip.trimmed else "untrimmed"
    print(f"Saved {clip.duration_seconds:.1f} s ({label}) to {path}")
    return path


def clipped_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}_clipped.wav")


def trim_file(service: BufferService, path: Path) -> Path:
    clip = service.trim_wav(path.read_bytes(), on_progress=print_progress)
    out_path = clipped_path(path)
    out_path.write_bytes(clip.to_wav_bytes())
    label = "trimmed" if clip.trimmed else "untrimmed"
    print(f"Saved {clip.duration_seconds:.1f} s ({label}) to {out_path}")
    return out_path


def main():
    parser = argparse.ArgumentParser(description="Always-on recent audio buffer")
    parser.add_argument("--config", type=str, help="Path to config file", default=".env")
    parser.add_argument("--create-config", action="store_true", help="Create example config file")
    parser.add_argument("--list-devices", action="store_true", help="List audio input devices")
    parser.add_argument("--output-dir", type=str, help="Directory for saved clips", default="recordings")
    parser.add_argument("--trim", type=str, metavar="FILE", help="Remove silence from an existing WAV file and exit")

    args = parser.parse_args()

    if args.create_config:
        create_example_env_file()
        print("Example configuration file created at .env.example")
        print("Copy it to .env and adjust the capture settings.")
        return

    if args.list_devices:
        import sounddevice as sd
        print(sd.query_devices())
        return

    config_path = Path(args.config) if args.config else None

    try:
        settings = load_config(config_path)
        setup_logging(settings.log_level)
        service = BufferService(settings)
        if args.trim:
            try:
                trim_file(service, Path(args.trim))
            except (OSError, ValueError) as e:
                print(f"Could not trim {args.trim}: {e}")
            except PipelineCancelledError:
                print("\nTrim cancelled")
            finally:
                service.close()
            return
        service.start()
    except CaptureStartError as e:
        print(f"Could not start recording: {e}")
        return
    except ValueError as e:
        print(f"Configuration error: {e}")
        print("Please check your configuration file.")
        return

    output_dir = Path(args.output_dir)
    print(f"Buffering the last {settings.buffer_duration_s} s of audio.")
    print("Commands: [s]ave clip, [r]eset buffer, [q]uit")

    try:
        for line in sys.stdin:
            command = line.strip().lower()
            if command == "s":
                try:
                    save_clip(service, output_dir)
                except PipelineCancelledError:
                    print("\nSave cancelled")
            elif command == "r":
                service.reset()
                print("Buffer cleared")
            elif command == "q":
                break
            elif command:
                print("Commands: [s]ave clip, [r]eset buffer, [q]uit")
    except KeyboardInterrupt:
        print("\nGoodbye!")
    finally:
        service.close()


if __name__ == "__main__":
    main()
