"""Result type used for operational outcomes (engine, backends).

Re-exports the ``result`` library so call sites import one stable path.
"""

from __future__ import annotations

from result import Err, Ok, Result, is_err, is_ok

__all__ = ['Result', 'Ok', 'Err', 'is_ok', 'is_err']
