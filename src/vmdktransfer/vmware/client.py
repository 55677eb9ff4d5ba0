"""VMware vSphere/vCenter client connection and task handling."""

from __future__ import annotations

import atexit
import ssl
import time
from typing import Any, Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from vmdktransfer.utils.logging import get_logger

logger = get_logger(__name__)


class TaskError(RuntimeError):
    """A vSphere task ended in error or did not finish in time."""


class VSphereClient:
    """Manages connection to a VMware vSphere/vCenter instance.

    Uses pyvmomi to connect via the vSphere API. Supports:
    - SSL certificate verification bypass (common in enterprise)
    - Retry with exponential backoff on the initial connection only
    - Session management with cleanup on exit
    """

    def __init__(self, task_timeout: int = 3600):
        self._si: Optional[vim.ServiceInstance] = None
        self._content: Optional[vim.ServiceInstanceContent] = None
        self._host: str = ""
        self.task_timeout = task_timeout

    @property
    def service_instance(self) -> vim.ServiceInstance:
        if self._si is None:
            raise ConnectionError("Not connected to vCenter. Call connect() first.")
        return self._si

    @property
    def content(self) -> vim.ServiceInstanceContent:
        if self._content is None:
            raise ConnectionError("Not connected to vCenter. Call connect() first.")
        return self._content

    def connect(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 443,
        insecure: bool = False,
        max_retries: int = 3,
    ) -> vim.ServiceInstance:
        """Connect to vCenter/vSphere with retry logic.

        Args:
            host: vCenter hostname or IP address
            username: Login username (e.g. administrator@vsphere.local)
            password: Login password
            port: API port (default 443)
            insecure: Skip SSL certificate verification
            max_retries: Number of connection attempts

        Returns:
            vSphere ServiceInstance

        Raises:
            ConnectionError: If all connection attempts fail
        """
        self._host = host
        ssl_context = None
        if insecure:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                logger.info(f"Connecting to vCenter {host} (attempt {attempt}/{max_retries})")
                self._si = SmartConnect(
                    host=host,
                    user=username,
                    pwd=password,
                    port=port,
                    sslContext=ssl_context,
                )
                self._content = self._si.RetrieveContent()
                atexit.register(Disconnect, self._si)

                logger.info(f"Connected to vCenter: {host} "
                            f"(API version: {self._content.about.apiVersion})")
                return self._si

            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.warning(f"Connection failed: {e}. Retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"All {max_retries} connection attempts failed")

        raise ConnectionError(f"Failed to connect to vCenter {host}: {last_error}")

    def disconnect(self):
        """Gracefully disconnect from vCenter."""
        if self._si:
            try:
                Disconnect(self._si)
                logger.info(f"Disconnected from vCenter: {self._host}")
            except Exception as e:
                logger.warning(f"Error during disconnect: {e}")
            finally:
                self._si = None
                self._content = None

    def get_container_view(self, obj_type: list, recursive: bool = True):
        """Create a container view for efficient object retrieval."""
        return self.content.viewManager.CreateContainerView(
            self.content.rootFolder, obj_type, recursive
        )

    def find_by_name(self, obj_type, name: str):
        """First managed object of ``obj_type`` called ``name``, or None."""
        container = self.get_container_view([obj_type])
        try:
            for obj in container.view:
                if obj.name == name:
                    return obj
            return None
        finally:
            container.Destroy()

    def wait_for_task(self, task: vim.Task, timeout: Optional[int] = None) -> Any:
        """Wait for a vSphere task to complete and return its result.

        Args:
            task: vSphere Task object
            timeout: Maximum wait time in seconds (client default if None)

        Raises:
            TaskError: If the task fails or times out
        """
        timeout = timeout or self.task_timeout
        start = time.time()
        while task.info.state in (vim.TaskInfo.State.running, vim.TaskInfo.State.queued):
            if time.time() - start > timeout:
                raise TaskError(f"Task timed out after {timeout}s: {task.info.descriptionId}")
            time.sleep(2)

        if task.info.state == vim.TaskInfo.State.success:
            return task.info.result
        error = task.info.error
        raise TaskError(f"Task failed: {error.msg if error is not None else 'unknown error'}")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()
