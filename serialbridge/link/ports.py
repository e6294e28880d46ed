from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List

# USB-serial bridges and boards commonly used with ESP32/Arduino controllers.
KNOWN_VENDOR_IDS = frozenset(
    {
        "10c4",  # Silicon Labs CP210x
        "1a86",  # QinHeng CH340/CH341
        "0403",  # FTDI
        "2341",  # Arduino
        "1b4f",  # SparkFun
        "303a",  # Espressif
        "067b",  # Prolific
        "1cf1",  # Dresden Elektronik
        "0483",  # STMicroelectronics
        "239a",  # Adafruit
        "16c0",  # Van Ooijen Technische Informatica
        "04d8",  # Microchip
    }
)
KNOWN_PRODUCT_IDS = frozenset({"ea60", "6001", "7523", "1001", "0001", "8036", "2303"})
KNOWN_MANUFACTURERS = (
    "silicon labs",
    "qinheng",
    "ftdi",
    "arduino",
    "espressif",
    "prolific",
    "cp210x",
    "ch340",
    "ch341",
    "microsoft",
)
KNOWN_KEYWORDS = (
    "esp32",
    "arduino",
    "usb serial",
    "usb-serial",
    "serial device",
    "cp210",
    "ch340",
    "ch341",
    "ftdi",
    "prolific",
    "comm port",
)
_COM_PORT = re.compile(r"com\d+", re.IGNORECASE)


@dataclass(frozen=True)
class DeviceDescriptor:
    path: str
    vendor_id: str | None = None
    product_id: str | None = None
    manufacturer: str | None = None
    serial_number: str | None = None
    description: str | None = None
    location: str | None = None

    @classmethod
    def from_port_info(cls, info: Any) -> "DeviceDescriptor":
        vid = getattr(info, "vid", None)
        pid = getattr(info, "pid", None)
        return cls(
            path=str(info.device),
            vendor_id=f"{vid:04x}" if vid is not None else None,
            product_id=f"{pid:04x}" if pid is not None else None,
            manufacturer=getattr(info, "manufacturer", None),
            serial_number=getattr(info, "serial_number", None),
            description=getattr(info, "description", None),
            location=getattr(info, "location", None),
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_likely_device(device: DeviceDescriptor) -> bool:
    if device.vendor_id and device.vendor_id.lower() in KNOWN_VENDOR_IDS:
        return True
    if device.product_id and device.product_id.lower() in KNOWN_PRODUCT_IDS:
        return True
    manufacturer = (device.manufacturer or "").lower()
    if manufacturer and any(name in manufacturer for name in KNOWN_MANUFACTURERS):
        return True
    description = (device.description or "").lower()
    if description and any(word in description for word in KNOWN_KEYWORDS):
        return True
    return bool(_COM_PORT.search(device.path))


def _pyserial_comports() -> Iterable[Any]:
    from serial.tools import list_ports

    return list_ports.comports()


def list_devices(
    include_all: bool = False,
    comports: Callable[[], Iterable[Any]] | None = None,
) -> List[DeviceDescriptor]:
    source = comports or _pyserial_comports
    devices = [DeviceDescriptor.from_port_info(info) for info in source()]
    if include_all:
        return devices
    return [device for device in devices if is_likely_device(device)]
