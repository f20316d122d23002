"""Module entrypoint for `python -m tether.client`."""

from __future__ import annotations

from tether.client.client import run


if __name__ == "__main__":
    run()
