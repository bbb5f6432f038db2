"""
Experiment configuration.

The JSON document has five top-level keys::

    {
        "instancesPaths": "./data",
        "resolutionMethods": ["build_tree"],
        "latexFormatPath": ["./config/latexTable.json"],
        "latexOutputFile": "./results/result_tables.tex",
        "parametersToCombine": {"time_limit": [10], "lambd": [0.9],
                                "mergePercentage": [100, 50, 0],
                                "multivariate": [true, false],
                                "D": [2, 3]}
    }

``parametersToCombine`` becomes a ``ParameterGrid``: one tuple per known
parameter, unknown keys rejected. ``combinations()`` walks the Cartesian
product with ``time_limit`` outermost and ``D`` innermost, each domain in
the order it was written.
"""

import itertools
import json
import math
import os
from collections import OrderedDict
from dataclasses import dataclass, fields
from typing import Iterator, Mapping, Optional, Tuple

from .builder import BuildParameters
from .errors import (
    ConfigError, InvalidDepthBound, InvalidRegularization, InvalidTimeLimit,
)
from .merger import check_percentage
from .methods import RESOLUTION_METHODS

# Config name -> field name, in product order.
PARAMETER_KEYS = OrderedDict([
    ("time_limit", "time_limit"),
    ("lambd", "lambd"),
    ("mergePercentage", "merge_percentage"),
    ("multivariate", "multivariate"),
    ("D", "max_depth"),
])

_DEFAULTS = {"lambd": (0.0,), "mergePercentage": (0,),
             "multivariate": (False,)}

CONFIG_KEYS = ("instancesPaths", "resolutionMethods", "latexFormatPath",
               "latexOutputFile", "parametersToCombine")


def _is_number(v) -> bool:
    return (isinstance(v, (int, float)) and not isinstance(v, bool)
            and not math.isnan(v))


def _check_value(key: str, v):
    if key == "time_limit":
        if not _is_number(v) or v <= 0:
            raise InvalidTimeLimit(f"time_limit must be > 0, got {v!r}")
    elif key == "lambd":
        if not _is_number(v) or v < 0:
            raise InvalidRegularization(f"lambd must be >= 0, got {v!r}")
    elif key == "mergePercentage":
        check_percentage(v)
    elif key == "multivariate":
        if not isinstance(v, bool):
            raise ConfigError(f"multivariate must be true/false, got {v!r}")
    elif key == "D":
        if not isinstance(v, int) or isinstance(v, bool) or v < 0:
            raise InvalidDepthBound(
                f"D must be a non-negative integer, got {v!r}")


# =============================================================================
# PARAMETER GRID
# =============================================================================

@dataclass(frozen=True)
class Combination:
    time_limit: float
    lambd: float
    merge_percentage: float
    multivariate: bool
    max_depth: int

    def build_parameters(self, **overrides) -> BuildParameters:
        return BuildParameters(time_limit=self.time_limit,
                               max_depth=self.max_depth, lambd=self.lambd,
                               multivariate=self.multivariate, **overrides)

    def build_key(self) -> tuple:
        """Everything that affects the build (not the merge pass)."""
        return (self.time_limit, self.lambd, self.multivariate,
                self.max_depth)

    def to_dict(self) -> "OrderedDict[str, object]":
        """Values under their configuration names."""
        return OrderedDict((key, getattr(self, name))
                           for key, name in PARAMETER_KEYS.items())


@dataclass(frozen=True)
class ParameterGrid:
    time_limit: Tuple[float, ...]
    max_depth: Tuple[int, ...]
    lambd: Tuple[float, ...] = (0.0,)
    merge_percentage: Tuple[float, ...] = (0,)
    multivariate: Tuple[bool, ...] = (False,)

    @classmethod
    def from_mapping(cls, mapping: Mapping) -> "ParameterGrid":
        if not isinstance(mapping, Mapping):
            raise ConfigError("parametersToCombine must be an object")
        unknown = [k for k in mapping if k not in PARAMETER_KEYS]
        if unknown:
            raise ConfigError(
                f"Unknown parameter(s) {unknown}, "
                f"expected a subset of {list(PARAMETER_KEYS)}")
        for required in ("time_limit", "D"):
            if required not in mapping:
                raise ConfigError(f"parametersToCombine needs {required!r}")

        kwargs = {}
        for key, name in PARAMETER_KEYS.items():
            values = mapping.get(key, _DEFAULTS.get(key))
            if isinstance(values, (str, bytes)) or not isinstance(
                    values, (list, tuple)):
                values = [values]
            if len(values) == 0:
                raise ConfigError(f"Parameter {key!r} has an empty domain")
            for v in values:
                _check_value(key, v)
            kwargs[name] = tuple(values)
        return cls(**kwargs)

    def __len__(self) -> int:
        n = 1
        for f in fields(self):
            n *= len(getattr(self, f.name))
        return n

    def combinations(self) -> Iterator[Combination]:
        domains = [getattr(self, name) for name in PARAMETER_KEYS.values()]
        for values in itertools.product(*domains):
            yield Combination(*values)

    def to_dict(self) -> "OrderedDict[str, list]":
        return OrderedDict((key, list(getattr(self, name)))
                           for key, name in PARAMETER_KEYS.items())


# =============================================================================
# EXPERIMENT CONFIG
# =============================================================================

@dataclass(frozen=True)
class ExperimentConfig:
    instances_path: str
    resolution_methods: Tuple[str, ...]
    latex_format_paths: Tuple[str, ...]
    latex_output_file: str
    parameters: ParameterGrid

    @classmethod
    def from_mapping(cls, doc: Mapping,
                     base_dir: Optional[str] = None) -> "ExperimentConfig":
        if not isinstance(doc, Mapping):
            raise ConfigError("configuration must be a JSON object")
        unknown = [k for k in doc if k not in CONFIG_KEYS]
        if unknown:
            raise ConfigError(f"Unknown configuration key(s) {unknown}")
        missing = [k for k in ("instancesPaths", "parametersToCombine")
                   if k not in doc]
        if missing:
            raise ConfigError(f"Missing configuration key(s) {missing}")

        base_dir = os.getcwd() if base_dir is None else base_dir

        def resolve(p):
            if not isinstance(p, str) or not p:
                raise ConfigError(f"Expected a path, got {p!r}")
            return os.path.normpath(os.path.join(base_dir, p))

        methods = doc.get("resolutionMethods", ["build_tree"])
        if isinstance(methods, str):
            methods = [methods]
        if not methods:
            raise ConfigError("resolutionMethods is empty")
        for m in methods:
            if m not in RESOLUTION_METHODS:
                raise ConfigError(
                    f"Unknown resolution method {m!r}, "
                    f"expected one of {sorted(RESOLUTION_METHODS)}")

        formats = doc.get("latexFormatPath", [])
        if isinstance(formats, str):
            formats = [formats]

        output = doc.get("latexOutputFile")
        return cls(
            instances_path=resolve(doc["instancesPaths"]),
            resolution_methods=tuple(methods),
            latex_format_paths=tuple(resolve(p) for p in formats),
            latex_output_file=resolve(output) if output is not None else "",
            parameters=ParameterGrid.from_mapping(doc["parametersToCombine"]),
        )


def load_config(path: str, base_dir: Optional[str] = None) -> ExperimentConfig:
    """Read a JSON experiment file; relative paths resolve against base_dir."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON: {e}") from e
    return ExperimentConfig.from_mapping(doc, base_dir)
