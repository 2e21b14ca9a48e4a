#!/usr/bin/env python3
"""
Mock plugin: an in-memory rig with no I/O, for dashboard development and tests.
"""

from typing import Any, Dict

from flask import jsonify, request

from ..logging_cfg import log
from ..protocols import RigEvent
from ..state import MODES
from .base import PluginServices, RigPlugin

DEFAULT_FREQ = 14074000
DEFAULT_MODE = 'USB'
DEFAULT_WIDTH = 2400


class MockPlugin(RigPlugin):
    plugin_id = 'mock'

    def _open(self):
        events = [RigEvent('connected', True)]
        # Seed a plausible state the first time, keep whatever was there otherwise
        if not self.state.freq:
            events.append(RigEvent('freq', DEFAULT_FREQ))
        if not self.state.mode:
            events.append(RigEvent('mode', DEFAULT_MODE))
            events.append(RigEvent('width', DEFAULT_WIDTH))
        self._apply(events)
        log("Mock rig ready")

    def _close(self):
        pass

    def set_freq(self, hz: int) -> bool:
        if hz < 0:
            return False
        self._apply([RigEvent('freq', int(hz))])
        return True

    def set_mode(self, mode: str) -> bool:
        mode = (mode or '').upper()
        if mode not in MODES:
            return False
        self._apply([RigEvent('mode', mode)])
        return True

    def set_ptt(self, on: bool) -> bool:
        self._apply([RigEvent('ptt', bool(on))])
        return True

    def simulate(self, values: Dict[str, Any]) -> int:
        """Apply a front-panel change as if the radio had reported it."""
        events = []
        if 'freq' in values:
            events.append(RigEvent('freq', int(values['freq'])))
        if 'mode' in values:
            events.append(RigEvent('mode', str(values['mode']).upper()))
        if 'width' in values:
            events.append(RigEvent('width', int(values['width'])))
        if 'ptt' in values:
            events.append(RigEvent('ptt', bool(values['ptt'])))
        return self.state.apply(events)


def create(config: Dict[str, Any], services: PluginServices) -> MockPlugin:
    return MockPlugin(config, services)


def register_routes(app, registry):
    """Add POST /api/mock/state to push simulated radio changes."""

    @app.route('/api/mock/state', methods=['POST'])
    def mock_state():
        plugin = registry.active
        if not isinstance(plugin, MockPlugin):
            return jsonify({'success': False, 'error': 'Mock rig is not active'}), 409
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({'success': False, 'error': 'Expected a JSON object'}), 400
        try:
            changed = plugin.simulate(body)
        except (TypeError, ValueError) as e:
            return jsonify({'success': False, 'error': str(e)}), 400
        return jsonify({'success': True, 'changed': changed})
