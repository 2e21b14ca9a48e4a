"""
Built-in rig plugins.

Plugin modules are imported lazily so that optional backends only load
their libraries when the table is built.
"""


def builtin_descriptors():
    """Return the static plugin registration table."""
    from ..registry import PluginDescriptor
    from . import flexradio, flrig, mock, rigctld, tci
    from .usb import usb_factory

    return [
        PluginDescriptor('yaesu', 'Yaesu (USB CAT)', 'rig', 'radio', usb_factory('yaesu')),
        PluginDescriptor('kenwood', 'Kenwood / Elecraft (USB CAT)', 'rig', 'radio',
                         usb_factory('kenwood')),
        PluginDescriptor('icom', 'Icom (CI-V)', 'rig', 'radio', usb_factory('icom')),
        PluginDescriptor('rigctld', 'Hamlib rigctld', 'rig', 'radio', rigctld.create),
        PluginDescriptor('flrig', 'flrig (XML-RPC)', 'rig', 'radio', flrig.create),
        PluginDescriptor('flexradio', 'FlexRadio SmartSDR', 'rig', 'radio', flexradio.create),
        PluginDescriptor('tci', 'TCI (Expert Electronics / SunSDR)', 'rig', 'radio', tci.create),
        PluginDescriptor('mock', 'Simulated rig', 'rig', 'radio', mock.create,
                         register_routes=mock.register_routes),
    ]
