"""
Driver Registry

Fixed, named collection of long-lived driver instances. The host selects
among them; swapping the active entry swaps the whole simulated instrument.
Instances are built eagerly and never replaced, so driver-internal state
survives re-selection within a session.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from services.hal.drivers.base import BaseInstrumentDriver, ConnectionConfig
from services.hal.drivers.chemistry import ChemistryAnalyzerDriver
from services.hal.drivers.ecl import LifotronicECLDriver
from services.hal.drivers.immunoassay import ImmunoassayDriver

logger = logging.getLogger(__name__)

DEFAULT_DRIVERS = {
    "Chemistry": ChemistryAnalyzerDriver,
    "Immunoassay": ImmunoassayDriver,
    "Lifotronic": LifotronicECLDriver,
}


class DriverRegistry:
    """
    Registry of driver instances keyed by name

    Example:
        registry = DriverRegistry()
        registry.register("Chemistry", ChemistryAnalyzerDriver())

        driver = registry.get("Chemistry")
        await driver.connect()
    """

    def __init__(self):
        self._drivers: Dict[str, BaseInstrumentDriver] = {}

    def register(self, name: str, driver: BaseInstrumentDriver) -> None:
        """
        Register a driver instance

        Args:
            name: Driver key (e.g., "Chemistry", "Lifotronic")
            driver: Driver instance (must implement BaseInstrumentDriver)

        Raises:
            TypeError: If driver doesn't implement BaseInstrumentDriver
            ValueError: If name is already registered
        """
        if not isinstance(driver, BaseInstrumentDriver):
            raise TypeError(
                f"Driver {type(driver).__name__} must inherit from BaseInstrumentDriver"
            )

        # A key must keep pointing at the same instance for the process lifetime
        if name in self._drivers:
            raise ValueError(f"Driver '{name}' already registered")

        self._drivers[name] = driver
        logger.info(f"Registered driver: {name} -> {type(driver).__name__} ({driver.metadata.id})")

    def get(self, name: str) -> BaseInstrumentDriver:
        """
        Look up a driver by name

        Raises:
            KeyError: If driver not registered
        """
        if name not in self._drivers:
            raise KeyError(
                f"Unknown driver: '{name}'. "
                f"Available drivers: {self.list_drivers()}"
            )
        return self._drivers[name]

    def __contains__(self, name: object) -> bool:
        return name in self._drivers

    def __len__(self) -> int:
        return len(self._drivers)

    def items(self) -> Iterator[Tuple[str, BaseInstrumentDriver]]:
        return iter(list(self._drivers.items()))

    def list_drivers(self) -> List[str]:
        """
        List all registered driver names

        Example:
            >>> registry.list_drivers()
            ['Chemistry', 'Immunoassay', 'Lifotronic']
        """
        return sorted(self._drivers.keys())

    def get_driver_info(self, name: str) -> Dict[str, Any]:
        """
        Get information about a registered driver

        Raises:
            KeyError: If driver not found
        """
        driver = self.get(name)

        return {
            "name": name,
            "class": type(driver).__name__,
            "module": type(driver).__module__,
            "metadata": driver.metadata.model_dump(mode="json"),
            "connected": driver.is_connected(),
        }


def create_default_registry(config: Optional[ConnectionConfig] = None) -> DriverRegistry:
    """
    Build the registry with one instance of every simulated analyzer

    A seeded config gives each driver its own reproducible stream.
    """
    config = config or ConnectionConfig()
    registry = DriverRegistry()

    for offset, (name, driver_class) in enumerate(DEFAULT_DRIVERS.items()):
        driver_config = config
        if config.seed is not None:
            driver_config = config.model_copy(update={"seed": config.seed + offset})
        registry.register(name, driver_class(driver_config))

    return registry
