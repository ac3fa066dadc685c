"""Leviathan client: ship test artifacts to a Leviathan host and drive the run.

- Hash-addressed uploads: suite, config and image are only sent when the
  host does not already hold the same content
- Streaming tar + gzip packaging with bounded memory
- Live duplex session bridged to the terminal, with clean interrupt handling
"""

__version__ = "0.1.0"
__description__ = "Client for uploading test artifacts to a Leviathan host and attaching to the run"

__all__ = ["__version__"]
