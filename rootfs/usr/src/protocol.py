"""
Apex Status Parser

This module turns the Apex controller's status document into a StatusSnapshot.

Document Format (GET /cgi-bin/status.xml):

    <status software="4.31_1Q14" hardware="1.0 Apex">
      <hostname>apex</hostname>
      <probes>
        <probe><name>Temp</name><value>78.2 </value><type>Temp</type></probe>
        <probe><name>pH</name><value>8.15 </value></probe>
      </probes>
      <outlets>
        <outlet><name>ReturnPump</name><outputID>1</outputID><state>ON</state></outlet>
        <outlet><name>Heater</name><outputID>2</outputID><state>AOF</state></outlet>
        <outlet><name>VarSpd1_I1</name><outputID>0</outputID><state>PF1</state></outlet>
      </outlets>
    </status>

Where:
- state = ON | OFF | AON (auto, currently on) | AOF (auto, currently off)
- outputs reporting any other state (variable speed or profile outputs) are
  skipped, so the same configuration always yields the same outlet list
- probe values are kept verbatim apart from surrounding whitespace
"""

import logging
import xml.etree.ElementTree as ET

from constants import OutletState
from state import Outlet, Probe, StatusSnapshot

logger = logging.getLogger(__name__)

_KNOWN_STATES = {state.value for state in OutletState}


def parse_status_xml(text: str | bytes) -> StatusSnapshot:
    """
    Parse a raw Apex status document.

    Args:
        text: The XML document as returned by the controller.

    Returns:
        StatusSnapshot: Outlets and probes in document order.

    Raises:
        ValueError: If the document is not XML or is not an Apex status document.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ValueError(f"Status document is not valid XML: {e}") from e

    if root.tag != "status":
        raise ValueError(f"Expecting '<status>' root element, received '<{root.tag}>'")

    outlets = []
    for element in root.iterfind("outlets/outlet"):
        name = (element.findtext("name") or "").strip()
        state = (element.findtext("state") or "").strip().upper()
        if not name:
            raise ValueError("Outlet without a name in status document")
        if state not in _KNOWN_STATES:
            logger.debug(f"Skipping outlet '{name}' with unsupported state '{state}'")
            continue
        outlets.append(Outlet(name=name, state=OutletState(state)))

    probes = []
    for element in root.iterfind("probes/probe"):
        name = (element.findtext("name") or "").strip()
        if not name:
            raise ValueError("Probe without a name in status document")
        probes.append(Probe(name=name, value=element.findtext("value") or ""))

    return StatusSnapshot(outlets=tuple(outlets), probes=tuple(probes))
