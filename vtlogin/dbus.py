import dbus
from vtlogin.misc import print_debug


class DbusInteractions:
    "Handles login manager interactions with logind via DBus"

    # mapping of logical service keys to (bus_name, object_path)
    _SERVICES = {
        "login": ("org.freedesktop.login1", "/org/freedesktop/login1"),
    }

    # mapping of service key -> { iface_key: iface_name, ... }
    _INTERFACES = {
        "login": {
            "manager": "org.freedesktop.login1.Manager",
            "properties": "org.freedesktop.DBus.Properties",
        },
    }

    def __init__(self, dbus_level: str = "system"):
        "Takes dbus_level as 'system' or 'session'"
        if dbus_level in ["system", "session"]:
            print_debug("initiate dbus interaction", dbus_level)
            self.dbus_level = dbus_level
            self._bus = None
            self._proxies = {}
            self._interfaces = {}
        else:
            raise ValueError(
                f"dbus_level can be 'system' or 'session', got '{dbus_level}'"
            )

    def __str__(self):
        return f"DbusInteractions, instance level: {self.dbus_level}, cached interfaces: {', '.join(self._interfaces)}"

    def _get_bus(self):
        """Lazily return and cache the system or session bus."""
        if self._bus is None:
            self._bus = (
                dbus.SystemBus() if self.dbus_level == "system" else dbus.SessionBus()
            )
        return self._bus

    def _get_proxy(self, service_key: str):
        """Retrieve and cache a DBus object proxy for the given service."""
        if service_key not in self._proxies:
            bus_name, path = self._SERVICES[service_key]
            self._proxies[service_key] = self._get_bus().get_object(bus_name, path)
        return self._proxies[service_key]

    def _get_interface(self, service_key: str, iface_key: str):
        """Retrieve and cache a DBus Interface for the given service and interface."""
        cache_key = f"{service_key}_{iface_key}"
        if cache_key not in self._interfaces:
            proxy = self._get_proxy(service_key)
            iface_name = self._INTERFACES[service_key][iface_key]
            self._interfaces[cache_key] = dbus.Interface(proxy, iface_name)
        return self._interfaces[cache_key]

    def _get_seat_iface(self, seat_id: str, iface_name: str):
        """Retrieve and cache an interface of the given logind seat."""
        cache_key = f"seat_{seat_id}_{iface_name}"
        if cache_key not in self._interfaces:
            seat_path = self._get_interface("login", "manager").GetSeat(seat_id)
            seat_obj = self._get_bus().get_object("org.freedesktop.login1", seat_path)
            self._interfaces[cache_key] = dbus.Interface(seat_obj, iface_name)
        return self._interfaces[cache_key]

    def get_seat_property(self, seat_id: str, seat_property: str):
        "Returns value of seat property"
        iface = self._get_seat_iface(seat_id, "org.freedesktop.DBus.Properties")
        return iface.Get("org.freedesktop.login1.Seat", seat_property)

    def switch_vt(self, seat_id: str, vtnr: int):
        "Switches seat to VT, raises RuntimeError if seat has no VTs"
        if not self.get_seat_property(seat_id, "CanTTY"):
            raise RuntimeError(f"Seat {seat_id} does not support VT switching")
        self._get_seat_iface(seat_id, "org.freedesktop.login1.Seat").SwitchTo(
            dbus.UInt32(vtnr)
        )
