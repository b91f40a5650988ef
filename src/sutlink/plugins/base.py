"""Capability vector and target base class shared by transport plugins"""

from typing import Any, Callable, Dict, Optional

from sutlink.core.sink import OutputSink


class Plugin:
    """Capability vector of a transport plugin

    Every entry except init is optional; the dispatch layer reports
    NOT_SUPPORTED for a missing one.
    """

    def __init__(self, name: str, init: Optional[Callable] = None,
                 run_test: Optional[Callable] = None,
                 inject_file: Optional[Callable] = None,
                 extract_file: Optional[Callable] = None,
                 interrupt_command: Optional[Callable] = None,
                 exit_remote: Optional[Callable] = None,
                 end: Optional[Callable] = None):
        """Initialize capability vector

        Args:
            name: Plugin name as used in target specs
            init: init(spec) -> target or None
            run_test: run_test(target, command) -> (rc, status)
            inject_file: inject_file(target, xfer) -> (rc, status)
            extract_file: extract_file(target, xfer) -> (rc, status)
            interrupt_command: interrupt_command(target) -> rc
            exit_remote: exit_remote(target) -> rc
            end: end(target), releases the target
        """
        self.name = name
        self.init = init
        self.run_test = run_test
        self.inject_file = inject_file
        self.extract_file = extract_file
        self.interrupt_command = interrupt_command
        self.exit_remote = exit_remote
        self.end = end

    def __repr__(self):
        return f"Plugin({self.name!r})"


class BaseTarget:
    """Handle for one configured endpoint, bound to exactly one plugin"""

    def __init__(self, plugin: Plugin, sink: Optional[OutputSink] = None):
        """Initialize target

        Args:
            plugin: Capability vector this target was created by
            sink: Router for progress output (defaults to discarding it)
        """
        self.plugin = plugin
        self.sink = sink or OutputSink()

    def configure(self, options: Dict[str, Any]) -> None:
        """Apply plugin specific options from the configuration"""
        pass

    def putc(self, is_error: bool, c: str) -> int:
        """Send one progress character to the sink"""
        return self.sink.putc(is_error, ord(c))
