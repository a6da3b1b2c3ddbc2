"""Message classes for the v2ray ``router`` geodata schema.

The descriptor is built in code instead of compiled from ``router.proto`` so
no protoc step is needed. Field names and numbers must stay identical to the
upstream schema, consumers decode the files with it.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_F = descriptor_pb2.FieldDescriptorProto
_PACKAGE = "router"


def _field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    kind: int,
    *,
    repeated: bool = False,
    type_name: str | None = None,
) -> None:
    field = message.field.add(
        name=name,
        number=number,
        type=kind,
        label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
    )
    if type_name:
        field.type_name = f".{_PACKAGE}.{type_name}"


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto(
        name="geodat/router.proto",
        package=_PACKAGE,
        syntax="proto3",
    )

    domain = proto.message_type.add(name="Domain")
    domain_type = domain.enum_type.add(name="Type")
    for number, name in enumerate(("Plain", "Regex", "Domain", "Full")):
        domain_type.value.add(name=name, number=number)
    _field(domain, "type", 1, _F.TYPE_ENUM, type_name="Domain.Type")
    _field(domain, "value", 2, _F.TYPE_STRING)

    cidr = proto.message_type.add(name="CIDR")
    _field(cidr, "ip", 1, _F.TYPE_BYTES)
    _field(cidr, "prefix", 2, _F.TYPE_UINT32)

    geoip = proto.message_type.add(name="GeoIP")
    _field(geoip, "country_code", 1, _F.TYPE_STRING)
    _field(geoip, "cidr", 2, _F.TYPE_MESSAGE, repeated=True, type_name="CIDR")

    geoip_list = proto.message_type.add(name="GeoIPList")
    _field(geoip_list, "entry", 1, _F.TYPE_MESSAGE, repeated=True, type_name="GeoIP")

    geosite = proto.message_type.add(name="GeoSite")
    _field(geosite, "country_code", 1, _F.TYPE_STRING)
    _field(geosite, "domain", 2, _F.TYPE_MESSAGE, repeated=True, type_name="Domain")

    geosite_list = proto.message_type.add(name="GeoSiteList")
    _field(
        geosite_list, "entry", 1, _F.TYPE_MESSAGE, repeated=True, type_name="GeoSite"
    )
    return proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_file_descriptor().SerializeToString())


def _message(name: str) -> type:
    return message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}")
    )


Domain = _message("Domain")
CIDR = _message("CIDR")
GeoSite = _message("GeoSite")
GeoSiteList = _message("GeoSiteList")
GeoIP = _message("GeoIP")
GeoIPList = _message("GeoIPList")
