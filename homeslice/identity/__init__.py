# Device identity
from homeslice.identity.keystore import FileKeyStore as FileKeyStore
from homeslice.identity.keystore import MemoryKeyStore as MemoryKeyStore
from homeslice.identity.manager import DeviceIdentityManager as DeviceIdentityManager

__all__ = ["DeviceIdentityManager", "FileKeyStore", "MemoryKeyStore"]
