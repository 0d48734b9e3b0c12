"""Entry point: delegates to the CLI app (serve, propose, sweep, oauth and admin commands)."""

from rich.traceback import install

from family_events.cli import app
from family_events.utils.tracing import shutdown_tracing


def run() -> None:
    try:
        install(show_locals=False, max_frames=5, word_wrap=True)
        app()
    finally:
        shutdown_tracing()


if __name__ == "__main__":
    run()
