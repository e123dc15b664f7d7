"""SmartThings textfile collector package.

A cron-driven collector that authenticates with the SmartThings cloud API,
reads sensor attributes for every authorized device, and writes them as a
Prometheus node exporter textfile.
"""

__version__ = "0.1.0"
