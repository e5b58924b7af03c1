"""Libvirt control plane: domains, storage volumes and snapshots."""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime

import libvirt

from fusion_vm.config import LIBVIRT_URI, STORAGE_POOL
from fusion_vm.exceptions import LibvirtError
from fusion_vm.models import Snapshot, VMState

logger = logging.getLogger(__name__)

GIB = 1024 ** 3


class LibvirtControlPlane:
    """Service for interacting with libvirt."""

    def __init__(self, uri: str = LIBVIRT_URI, pool: str = STORAGE_POOL) -> None:
        self._uri = uri
        self.pool_name = pool
        self._conn: libvirt.virConnect | None = None

    def connect(self) -> None:
        """Connect to libvirt."""

        # Errors are reported through LibvirtError; keep libvirt from printing them too
        def libvirt_error_handler(ctx, err):
            logger.debug("libvirt: %s", err[2] if len(err) > 2 else err)

        libvirt.registerErrorHandler(libvirt_error_handler, None)

        try:
            self._conn = libvirt.open(self._uri)
            if self._conn is None:
                raise LibvirtError("connect", f"Failed to connect to {self._uri}")
        except libvirt.libvirtError as e:
            raise LibvirtError("connect", f"Connection to {self._uri} failed: {e}") from e

    def disconnect(self) -> None:
        """Disconnect from libvirt."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> libvirt.virConnect:
        """Get connection, connecting if needed."""
        if self._conn is None:
            self.connect()
        assert self._conn is not None
        return self._conn

    def _domain(self, name: str) -> libvirt.virDomain:
        try:
            return self.conn.lookupByName(name)
        except libvirt.libvirtError as e:
            raise LibvirtError("lookup", f"Environment '{name}' not found: {e}") from e

    def _pool(self) -> libvirt.virStoragePool:
        try:
            return self.conn.storagePoolLookupByName(self.pool_name)
        except libvirt.libvirtError as e:
            raise LibvirtError("pool-lookup", f"Storage pool '{self.pool_name}' not found: {e}") from e

    # Domain operations
    def define_domain(self, xml: str) -> None:
        """Define (or redefine) a persistent domain."""
        try:
            domain = self.conn.defineXML(xml)
            if domain is None:
                raise LibvirtError("define", "Failed to define domain")
        except libvirt.libvirtError as e:
            raise LibvirtError("define", str(e)) from e

    def start(self, name: str) -> None:
        """Start a defined domain."""
        domain = self._domain(name)
        try:
            domain.create()
        except libvirt.libvirtError as e:
            raise LibvirtError("start", str(e)) from e

    def shutdown(self, name: str) -> None:
        """Request a guest-cooperative shutdown."""
        domain = self._domain(name)
        try:
            domain.shutdown()
        except libvirt.libvirtError as e:
            raise LibvirtError("shutdown", str(e)) from e

    def domain_state(self, name: str) -> VMState | None:
        """Current domain state, or None if the domain is not defined."""
        try:
            domain = self.conn.lookupByName(name)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                return None
            raise LibvirtError("domstate", str(e)) from e

        try:
            state, _ = domain.state()
        except libvirt.libvirtError as e:
            raise LibvirtError("domstate", str(e)) from e
        return VMState(state)

    # Storage volumes
    def volume_exists(self, name: str) -> bool:
        """Check if a volume exists in the storage pool."""
        pool = self._pool()
        try:
            pool.storageVolLookupByName(name)
        except libvirt.libvirtError:
            return False
        return True

    def create_volume(self, name: str, size_gb: int) -> None:
        """Create a qcow2 volume in the storage pool."""
        volume = ET.Element("volume")
        ET.SubElement(volume, "name").text = name
        ET.SubElement(volume, "capacity", unit="G").text = str(size_gb)
        target = ET.SubElement(volume, "target")
        ET.SubElement(target, "format", type="qcow2")

        try:
            self._pool().createXML(ET.tostring(volume, encoding="unicode"), 0)
        except libvirt.libvirtError as e:
            raise LibvirtError("vol-create", f"Failed to create volume {name}: {e}") from e

    def volume_capacity_gb(self, name: str) -> int:
        """Virtual size of a volume, rounded to whole GiB."""
        try:
            volume = self._pool().storageVolLookupByName(name)
            _, capacity, _ = volume.info()
        except libvirt.libvirtError as e:
            raise LibvirtError("vol-info", f"Failed to read volume {name}: {e}") from e
        return round(capacity / GIB)

    def resize_volume(self, name: str, size_gb: int) -> None:
        """Grow a volume to ``size_gb``; libvirt refuses to shrink without a flag."""
        try:
            volume = self._pool().storageVolLookupByName(name)
            volume.resize(size_gb * GIB, 0)
        except libvirt.libvirtError as e:
            raise LibvirtError("vol-resize", f"Failed to resize volume {name}: {e}") from e

    # Snapshot operations
    def snapshot_list(self, name: str) -> list[Snapshot]:
        """List snapshots for a domain, newest first."""
        domain = self._domain(name)
        try:
            try:
                current = domain.snapshotCurrent()
                current_name = current.getName() if current else None
            except libvirt.libvirtError:
                current_name = None  # no current snapshot

            snapshots: list[Snapshot] = []
            for snap in domain.listAllSnapshots():
                xml = ET.fromstring(snap.getXMLDesc())

                desc_elem = xml.find("description")
                time_elem = xml.find("creationTime")
                state_elem = xml.find("state")
                parent_elem = xml.find("parent/name")

                snapshots.append(Snapshot(
                    name=snap.getName(),
                    description=desc_elem.text if desc_elem is not None and desc_elem.text else "",
                    created_at=datetime.fromtimestamp(
                        int(time_elem.text) if time_elem is not None and time_elem.text else 0
                    ),
                    state=state_elem.text if state_elem is not None and state_elem.text else "unknown",
                    parent=parent_elem.text if parent_elem is not None else None,
                    is_current=snap.getName() == current_name,
                ))
        except libvirt.libvirtError as e:
            raise LibvirtError("snapshot-list", str(e)) from e

        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def snapshot_create(self, name: str, snap_name: str, description: str = "") -> None:
        """Create a snapshot atomically: either it exists afterwards or nothing changed."""
        snapshot = ET.Element("domainsnapshot")
        ET.SubElement(snapshot, "name").text = snap_name
        ET.SubElement(snapshot, "description").text = description

        domain = self._domain(name)
        try:
            domain.snapshotCreateXML(
                ET.tostring(snapshot, encoding="unicode"),
                libvirt.VIR_DOMAIN_SNAPSHOT_CREATE_ATOMIC,
            )
        except libvirt.libvirtError as e:
            raise LibvirtError("snapshot-create", str(e)) from e

    def snapshot_revert(self, name: str, snap_name: str) -> None:
        """Revert to a snapshot, leaving the guest running."""
        domain = self._domain(name)
        try:
            snapshot = domain.snapshotLookupByName(snap_name)
            domain.revertToSnapshot(snapshot, libvirt.VIR_DOMAIN_SNAPSHOT_REVERT_RUNNING)
        except libvirt.libvirtError as e:
            raise LibvirtError("snapshot-revert", str(e)) from e

    def snapshot_delete(self, name: str, snap_name: str) -> None:
        """Delete a snapshot."""
        domain = self._domain(name)
        try:
            snapshot = domain.snapshotLookupByName(snap_name)
            snapshot.delete()
        except libvirt.libvirtError as e:
            raise LibvirtError("snapshot-delete", str(e)) from e
