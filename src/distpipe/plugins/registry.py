from importlib.metadata import entry_points

from distpipe.bundlers.copy import CopyBundler
from distpipe.bundlers.exec import ExecBundler
from distpipe.transformers.exec import ExecTransformer
from distpipe.transformers.passthrough import PassthroughTransformer

TRANSFORMER_GROUP = "distpipe.transformers"
BUNDLER_GROUP = "distpipe.bundlers"

BUILTIN_TRANSFORMERS = {
    "passthrough": PassthroughTransformer,
    "exec": ExecTransformer,
}

BUILTIN_BUNDLERS = {
    "copy": CopyBundler,
    "exec": ExecBundler,
}


def load_transformer(kind: str):
    if kind in BUILTIN_TRANSFORMERS:
        return BUILTIN_TRANSFORMERS[kind]
    for ep in entry_points(group=TRANSFORMER_GROUP):
        if ep.name == kind:
            return ep.load()
    raise ValueError(f"Unknown transformer type: {kind}")


def load_bundler(kind: str):
    if kind in BUILTIN_BUNDLERS:
        return BUILTIN_BUNDLERS[kind]
    for ep in entry_points(group=BUNDLER_GROUP):
        if ep.name == kind:
            return ep.load()
    raise ValueError(f"Unknown bundler type: {kind}")
