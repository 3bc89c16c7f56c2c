DEFAULT_CONFIG_NAME = "distpipe.yaml"

COMPILED_IMPORT_PREFIX = "next/dist/compiled"

# Left unresolved by every bundle; resolved from node_modules at runtime.
BASE_EXTERNALS = {
    "@babel/core": "@babel/core",
    "browserslist": "browserslist",
    "caniuse-lite": "caniuse-lite",
    "webpack": "webpack",
    "webpack-sources": "webpack-sources",
    "webpack/lib/node/NodeOutputFileSystem": "webpack/lib/node/NodeOutputFileSystem",
    "webpack/lib/cache/getLazyHashedEtag": "webpack/lib/cache/getLazyHashedEtag",
    "webpack/lib/RequestShortener": "webpack/lib/RequestShortener",
    "chokidar": "chokidar",
    "find-cache-dir": "find-cache-dir",
    "loader-runner": "loader-runner",
    "loader-utils": "loader-utils",
    "mkdirp": "mkdirp",
    "neo-async": "neo-async",
    "schema-utils": "schema-utils",
    "jest-worker": "jest-worker",
    "cacache": "cacache",
}

BUNDLED_PACKAGES = (
    "amphtml-validator",
    "arg",
    "async-retry",
    "async-sema",
    "babel-loader",
    "cache-loader",
    "chalk",
    "ci-info",
    "compression",
    "conf",
    "content-type",
    "cookie",
    "debug",
    "devalue",
    "escape-string-regexp",
    "etag",
    "file-loader",
    "find-up",
    "fresh",
    "gzip-size",
    "http-proxy",
    "ignore-loader",
    "is-docker",
    "is-wsl",
    "json5",
    "jsonwebtoken",
    "lodash.curry",
    "lru-cache",
    "nanoid",
    "node-fetch",
    "ora",
    "postcss-flexbugs-fixes",
    "postcss-loader",
    "postcss-preset-env",
    "raw-body",
    "recast",
    "resolve",
    "send",
    "source-map",
    "string-hash",
    "strip-ansi",
    "terser",
    "text-table",
    "thread-loader",
    "unistore",
    "terser-webpack-plugin",
    "comment-json",
    "semver",
)

DEFAULT_COPIES = (
    {"package": "@next/polyfill-nomodule", "dest": "build/polyfills/nomodule.js"},
    {"package": "unfetch", "dest": "build/polyfills/unfetch.js"},
    {"package": "path-to-regexp", "dest": "build/path-to-regexp.js"},
)
