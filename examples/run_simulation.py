"""Run a maize season at the default location on synthetic weather."""

import datetime
import logging
from pathlib import Path
from pprint import pprint

from cropsim.core.controller import SimulationController
from cropsim.library.config import SimulationConfig, load_config

CONFIG_PATH = Path(Path(__file__).parent, "cropsim.yaml")


def main(crop: str = "maize", location: str = "New Delhi, India") -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if CONFIG_PATH.exists():
        config = load_config(CONFIG_PATH)
    else:
        config = SimulationConfig(start_date=datetime.date(2024, 6, 15))

    controller = SimulationController(config)
    controller.select_crop(crop)
    controller.select_location(location)
    controller.initialize()
    summary = controller.run_until_complete()
    pprint(summary)

    frame = controller.history_frame()
    print(frame.loc[frame["transitioned"], ["stage", "gdd_cum", "moisture"]])


if __name__ == "__main__":
    main()
