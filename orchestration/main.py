"""
White Rabbit — Entry Point

Run with `python -m orchestration.main`, `python -m bot.client`, or the
installed `whiterabbit` script.
"""

from bot.client import run

if __name__ == "__main__":
    run()
