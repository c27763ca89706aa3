"""emissions-core — reputer and worker scoring for a decentralized inference network."""

__version__ = "0.1.0"
