"""Build v2ray style geosite.dat and geoip.dat rule databases."""

__version__ = "0.1.0"
