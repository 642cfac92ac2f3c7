"""
Default client classification based on vendor, hostname and link type.

classify_client is a pure function of one raw controller record. The
reconciler accepts any callable with the same signature, so deployments
can plug in their own heuristics and tests can use fixed results.
"""

from __future__ import annotations

from typing import Any, Optional

from ._types import DeviceAttributes, DeviceType, normalize_mac

# Small OUI table used when the controller did not resolve the vendor
OUI_VENDORS = {
    "00:17:88": "Philips Hue",
    "18:b4:30": "Nest Labs",
    "24:a4:3c": "Ubiquiti",
    "28:cf:e9": "Apple",
    "3c:22:fb": "Apple",
    "44:65:0d": "Amazon",
    "50:c7:bf": "TP-Link",
    "5c:aa:fd": "Sonos",
    "78:8a:20": "Ubiquiti",
    "7c:bb:8a": "Nintendo",
    "8c:85:90": "Apple",
    "b8:27:eb": "Raspberry Pi Foundation",
    "dc:a6:32": "Raspberry Pi Foundation",
    "f0:18:98": "Apple",
    "f4:f5:d8": "Google",
    "fc:65:de": "Amazon",
}

TYPE_HINTS: list[tuple[DeviceType, tuple[str, ...]]] = [
    (DeviceType.NETWORK, ("ubiquiti", "unifi", "router", "usw-", "uap-", "tp-link", "netgear")),
    (DeviceType.GAMING, ("xbox", "playstation", "ps4", "ps5", "nintendo", "steamdeck")),
    (DeviceType.TV, ("tv", "roku", "chromecast", "firetv", "appletv", "apple-tv", "bravia", "shield")),
    (DeviceType.TABLET, ("ipad", "tablet", "galaxy-tab", "kindle")),
    (DeviceType.PHONE, ("iphone", "android", "pixel", "galaxy", "phone", "oneplus")),
    (DeviceType.COMPUTER, ("macbook", "imac", "laptop", "desktop", "pc", "thinkpad", "surface")),
    (DeviceType.IOT, ("hue", "nest", "echo", "alexa", "sonos", "ring", "raspberry", "esp", "tasmota", "shelly")),
]


def lookup_vendor(mac: str) -> Optional[str]:
    """Vendor for the MAC's OUI prefix, if it is in the local table."""
    return OUI_VENDORS.get(normalize_mac(mac)[:8])


def guess_device_type(hostname: Optional[str], vendor: Optional[str], is_wired: bool) -> DeviceType:
    """Device-type tag from hostname and vendor hints."""
    haystack = " ".join(part.lower() for part in (hostname, vendor) if part)

    for device_type, hints in TYPE_HINTS:
        if any(hint in haystack for hint in hints):
            return device_type

    if vendor and vendor.lower().startswith("apple"):
        return DeviceType.PHONE if not is_wired else DeviceType.COMPUTER

    return DeviceType.UNKNOWN


def classify_client(raw: dict[str, Any]) -> DeviceAttributes:
    """
    Classify one raw controller client record.

    Args:
        raw: Client record as returned by the controller

    Returns:
        DeviceAttributes with vendor, display name, online flag and type
    """
    mac = raw.get("mac") or ""
    hostname = raw.get("hostname")
    vendor = raw.get("oui") or lookup_vendor(mac)
    is_wired = bool(raw.get("is_wired", False))

    display_name = raw.get("name") or hostname
    if not display_name:
        display_name = f"{vendor} device" if vendor else (normalize_mac(mac) or "Unknown device")

    online = not raw.get("blocked", False) and raw.get("is_online", True) is not False

    return DeviceAttributes(
        vendor=vendor,
        display_name=display_name,
        online=online,
        device_type=guess_device_type(raw.get("name") or hostname, vendor, is_wired),
    )
