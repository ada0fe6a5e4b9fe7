"""ASGI entrypoint for the Nano Lens API."""

from nano_lens.api.app import create_app
from nano_lens.containers import build_container

app = create_app(build_container())
