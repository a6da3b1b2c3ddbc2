class GeodatError(Exception):  # noqa: D101
    pass


class ConfigError(GeodatError):  # noqa: D101
    pass


class SourceUnavailable(GeodatError):  # noqa: D101, N818
    def __init__(self, source: str, reason: str) -> None:  # noqa: D107
        super().__init__(f"source {source!r} unavailable: {reason}")
        self.source = source
        self.reason = reason


class MalformedSource(GeodatError):  # noqa: D101, N818
    def __init__(self, source: str, reason: str) -> None:  # noqa: D107
        super().__init__(f"source {source!r} is malformed: {reason}")
        self.source = source
        self.reason = reason


class MalformedLine(GeodatError):  # noqa: D101, N818
    pass


class MalformedCidr(GeodatError):  # noqa: N818
    """Raised for an IP-CIDR that cannot be parsed.

    ``source`` and ``category`` are filled in by the merger so the operator
    sees where the value came from.
    """

    def __init__(
        self,
        value: str,
        reason: str,
        *,
        source: str | None = None,
        category: str | None = None,
    ) -> None:
        self.value = value
        self.reason = reason
        self.source = source
        self.category = category
        super().__init__(str(self))

    def __str__(self) -> str:  # noqa: D105
        where = ", ".join(
            f"{key}={val!r}"
            for key, val in (("source", self.source), ("category", self.category))
            if val
        )
        suffix = f" ({where})" if where else ""
        return f"malformed cidr {self.value!r}: {self.reason}{suffix}"


class EncodeRoundTripFailure(GeodatError):  # noqa: D101, N818
    def __init__(self, destination: str, reason: str) -> None:  # noqa: D107
        super().__init__(f"round-trip check of {destination} failed: {reason}")
        self.destination = destination
        self.reason = reason
