"""Protocol clients implementing `mucbot.connection.Connection`."""

from __future__ import annotations

from .matrix import MatrixConnection, connect_matrix

__all__ = ["MatrixConnection", "connect_matrix"]
