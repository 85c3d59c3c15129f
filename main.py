import uvicorn

from transcription_gate.api.app import create_app
from transcription_gate.core.di import get_config
from transcription_gate.core.logger import setup_logging


def main() -> None:
    config = get_config()
    setup_logging(config.logging, config.paths.fs_dir)
    uvicorn.run(create_app(), host=config.server.addr, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
