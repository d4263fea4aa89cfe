"""Declarative field schema for the Rinnai Touch state tree.

Every readable or writable setting is described once by a
:class:`FieldDefinition`. The same definition drives both directions of the
translation: decoding a status frame into a configuration view and encoding a
command back into the single-field update the module expects.

System-level fields live in :data:`SYSTEM_SCHEMA`. Each installed service
(gas heating, evaporative cooling, ...) publishes the same set of settings
under its own top-level group, so its schema is generated from the service
code by :func:`service_schema` rather than written out per service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import SchemaError

LOGGER = logging.getLogger(__name__)

SYSTEM_SERVICE = "system"
PATH_DEPTH = 3

BOOLEAN_CODES: Mapping[str, Any] = MappingProxyType({"Y": True, "N": False})


def boundary_text(value: Any) -> str:
    """Render a semantic value the way it crosses the message bus."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


@dataclass(frozen=True, eq=False)
class CodeTable:
    """Bijective mapping between compact protocol codes and semantic values."""

    codes: Mapping[str, Any]
    _inverse: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        inverse: Dict[str, str] = {}
        for code, value in self.codes.items():
            key = boundary_text(value)
            if key in inverse:
                raise SchemaError(
                    f"codes {inverse[key]!r} and {code!r} both map to {value!r}"
                )
            inverse[key] = code
        object.__setattr__(self, "codes", MappingProxyType(dict(self.codes)))
        object.__setattr__(self, "_inverse", MappingProxyType(inverse))

    def decode(self, code: Any) -> Any:
        if code is None:
            return None
        return self.codes.get(str(code))

    def encode(self, requested: str) -> Optional[str]:
        """Return the code for a requested value, or ``None`` when unknown."""

        return self._inverse.get(requested)


@dataclass(frozen=True)
class FieldDefinition:
    """A single setting addressed by a ``group.section.field`` path."""

    name: str
    path: str
    writable: bool = False
    codes: Optional[CodeTable] = None
    applicable_services: frozenset[str] = frozenset()
    description: str = ""
    segments: Tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        segments = tuple(self.path.split("."))
        if len(segments) != PATH_DEPTH or not all(segments):
            raise SchemaError(
                f"{self.name}: path {self.path!r} must have exactly {PATH_DEPTH} segments"
            )
        object.__setattr__(self, "segments", segments)

    def applies_to(self, service: str) -> bool:
        return service in self.applicable_services

    def decode(self, raw: Any) -> Any:
        if self.codes is None:
            return raw
        value = self.codes.decode(raw)
        if value is None and raw is not None:
            LOGGER.debug("%s: unknown code %r at %s", self.name, raw, self.path)
        return value

    def encode(self, requested: str) -> Optional[str]:
        if self.codes is None:
            return requested
        return self.codes.encode(requested)

    def update_payload(self, code: Any) -> Dict[str, Any]:
        group, section, name = self.segments
        return {group: {section: {name: code}}}


@dataclass(frozen=True)
class ServiceDescriptor:
    """An installable appliance capability and its protocol group code."""

    name: str
    code: str
    presence_field: str
    description: str = ""


def _codes(mapping: Optional[Mapping[str, Any]]) -> Optional[CodeTable]:
    return CodeTable(mapping) if mapping is not None else None


def _system(
    name: str,
    path: str,
    *,
    codes: Optional[Mapping[str, Any]] = None,
    writable: bool = False,
    services: Iterable[str] = (),
    description: str = "",
) -> FieldDefinition:
    # System fields are always addressable through the "system" service.
    return FieldDefinition(
        name=name,
        path=path,
        writable=writable,
        codes=_codes(codes),
        applicable_services=frozenset({SYSTEM_SERVICE, *services}),
        description=description,
    )


def _build_registry(*definitions: FieldDefinition) -> Mapping[str, FieldDefinition]:
    registry: Dict[str, FieldDefinition] = {}
    for definition in definitions:
        if definition.name in registry:
            raise SchemaError(f"duplicate field {definition.name!r}")
        registry[definition.name] = definition
    return MappingProxyType(registry)


_MODE_CODES = {
    "H": "heating",
    "E": "evapCooling",
    "C": "addonCooling",
    "R": "reverseCycle",
    "N": "none",
}

SYSTEM_SCHEMA: Mapping[str, FieldDefinition] = _build_registry(
    _system("multiSetPoint", "SYST.CFG.MTSP", codes=BOOLEAN_CODES,
            description="Multi set point control enabled"),
    _system("dualFuelAllowed", "SYST.CFG.DF", codes=BOOLEAN_CODES,
            description="Dual fuel control allowed"),
    _system("tempUnit", "SYST.CFG.TU", description="Temperature display units"),
    _system("clockFormat", "SYST.CFG.CF", codes={"1": 12, "2": 24},
            description="Clock display format"),
    _system("descriptionZoneA", "SYST.CFG.ZA", description="Zone A description"),
    _system("descriptionZoneB", "SYST.CFG.ZB", description="Zone B description"),
    _system("descriptionZoneC", "SYST.CFG.ZC", description="Zone C description"),
    _system("descriptionZoneD", "SYST.CFG.ZD", description="Zone D description"),
    _system("fwVersion", "SYST.CFG.VR", description="N-BW2 firmware version"),
    _system("fwWifiVersion", "SYST.CFG.CV",
            description="N-BW2 WiFi module firmware version"),
    _system("certChecksum", "SYST.CFG.CC", description="Certificate checksum value"),
    _system("nc7", "SYST.CFG.NC", codes=BOOLEAN_CODES,
            description="N-C7 based system"),
    _system("gasHeating", "SYST.AVM.HG", codes=BOOLEAN_CODES,
            description="Gas heating installed"),
    _system("evapCooling", "SYST.AVM.EC", codes=BOOLEAN_CODES,
            description="Evaporative cooling installed"),
    _system("addonCooling", "SYST.AVM.CG", codes=BOOLEAN_CODES,
            description="Add-on cooling installed"),
    _system("reverseCycle", "SYST.AVM.RA", codes=BOOLEAN_CODES,
            description="Reverse-cycle air conditioning installed"),
    _system("reverseCycleHeating", "SYST.AVM.RH", codes=BOOLEAN_CODES,
            description="Reverse-cycle heating installed"),
    _system("reverseCycleCooling", "SYST.AVM.RC", codes=BOOLEAN_CODES,
            description="Reverse-cycle cooling installed"),
    _system("networkerDay", "SYST.OSS.DY", description="Network day of the week"),
    _system("networkerTime", "SYST.OSS.TM", description="Network time"),
    _system("registeredMaster", "SYST.OSS.RG", codes=BOOLEAN_CODES,
            description="N-BW2 module is registered with the master networker"),
    _system("operatingState", "SYST.OSS.ST",
            codes={"N": "normal", "C": "clock", "P": "parameter", "U": "user", "Y": "pin"},
            description="Operating state"),
    _system("operatingMode", "SYST.OSS.MD", codes=_MODE_CODES, writable=True,
            services=("gasHeating", "evapCooling", "addonCooling"),
            description="Operating mode"),
    _system("faultDetected", "SYST.FLT.AV", codes=BOOLEAN_CODES,
            description="Fault has been detected"),
    _system("faultLocation", "SYST.FLT.GP",
            codes={**_MODE_CODES, "N": "controller"},
            description="Device type exhibiting fault"),
    _system("faultDeviceId", "SYST.FLT.UT", description="Device id exhibiting fault"),
    _system("faultSeverity", "SYST.FLT.TP",
            codes={"M": "minor", "B": "busy", "L": "lockout"},
            description="Fault severity"),
    _system("faultCode", "SYST.FLT.CD", description="Fault code"),
)

SERVICES: Tuple[ServiceDescriptor, ...] = (
    ServiceDescriptor("gasHeating", "HGOM", "gasHeating", "Gas heating"),
    ServiceDescriptor("evapCooling", "ECOM", "evapCooling", "Evaporative cooling"),
    ServiceDescriptor("addonCooling", "CGOM", "addonCooling", "Add-on cooling"),
    ServiceDescriptor("reverseCycle", "RCOM", "reverseCycle", "Reverse-cycle air conditioning"),
)

SERVICES_BY_NAME: Mapping[str, ServiceDescriptor] = MappingProxyType(
    {service.name: service for service in SERVICES}
)

_ZONED = frozenset({"gasHeating", "addonCooling", "reverseCycle"})
_REVERSE_CYCLE = frozenset({"reverseCycle"})


@lru_cache(maxsize=None)
def service_schema(code: str) -> Mapping[str, FieldDefinition]:
    """Generate the field table for the service group ``code``.

    The result is cached, so every caller shares one immutable table per
    service code.
    """

    def _service(
        name: str,
        section_field: str,
        *,
        codes: Optional[Mapping[str, Any]] = None,
        writable: bool = False,
        services: frozenset[str] = _ZONED,
        description: str = "",
    ) -> FieldDefinition:
        return FieldDefinition(
            name=name,
            path=f"{code}.{section_field}",
            writable=writable,
            codes=_codes(codes),
            applicable_services=services,
            description=description,
        )

    zone_fields = []
    for zone in "ABCD":
        zone_fields.extend(
            (
                _service(f"currentTempZone{zone}", f"Z{zone}S.MT",
                         description=f"Zone {zone} current temperature (999=unavailable)"),
                _service(f"setTempZone{zone}", f"Z{zone}O.SP", writable=True,
                         description=f"Zone {zone} set temperature (0-30)"),
            )
        )

    return _build_registry(
        _service("commonZone", "CFG.ZUIS", codes=BOOLEAN_CODES,
                 description="Common zone enabled"),
        *(
            _service(f"zone{zone}", f"CFG.Z{zone}IS", codes=BOOLEAN_CODES,
                     description=f"Zone {zone} enabled")
            for zone in "ABCD"
        ),
        _service("circulationFan", "CFG.CF", codes=BOOLEAN_CODES,
                 description="Circulation fan enabled"),
        _service("operatingState", "OOP.ST", codes={"F": "off", "N": "on", "Z": "fan"},
                 writable=True, description="Operating state"),
        _service("fanSpeed", "OOP.FL", writable=True, description="Fan speed (0-16)"),
        _service("currentTemp", "ZUS.MT",
                 description="Current temperature (999=unavailable)"),
        _service("setTemp", "GSO.SP", writable=True,
                 description="Set temperature (0-30)"),
        *zone_fields,
        _service("reverseCycleMode", "GSO.AM",
                 codes={"C": "cooling", "D": "cooling_heating", "H": "heating"},
                 writable=True, services=_REVERSE_CYCLE,
                 description="Reverse-cycle mode"),
    )


def schema_for(service: str) -> Optional[Mapping[str, FieldDefinition]]:
    """Resolve the field table addressed by ``service``, if any."""

    if service == SYSTEM_SERVICE:
        return SYSTEM_SCHEMA
    descriptor = SERVICES_BY_NAME.get(service)
    if descriptor is None:
        return None
    return service_schema(descriptor.code)
