"""Configuration constants for upgradeable-deployments library."""

# Schema version written into every project manifest and network ledger
MANIFEST_VERSION = "2.2"

# Directory (relative to a project or installed package root) holding manifests
PROJECT_DIR_NAME = ".upgrades"
PROJECT_FILE_NAME = "project.json"
NETWORKS_CONFIG_FILE_NAME = "networks.json"

# Sidecar file locked by ledger writers, next to the ledger itself
LOCK_SUFFIX = ".lock"

# Installed dependencies live where the package installer puts them
DEPENDENCIES_DIR_NAME = "node_modules"

# Canonical chain id -> ledger file stem, based on ethereum-lists/chains.
# Any id not listed here is treated as a private or ephemeral chain.
NETWORK_NAMES = {
    1: "mainnet",
    2: "morden",
    3: "ropsten",
    4: "rinkeby",
    5: "goerli",
    42: "kovan",
    100: "xdai",
    11155111: "sepolia",
}

DEV_NETWORK_PREFIX = "dev-"

# Receipt polling for JSON-RPC deployments
DEFAULT_RPC_TIMEOUT = 30
DEFAULT_RECEIPT_TIMEOUT = 240
DEFAULT_POLL_INTERVAL = 1.0

# Keys of the singleton infrastructure contracts recorded in a network ledger
SINGLETON_KINDS = ("proxyAdmin", "app", "package", "provider")
