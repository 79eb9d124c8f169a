"""
Voice script (TwiML) builder.

Each verb is a small dataclass that renders itself to an XML element;
VoiceScript collects verbs and renders the <Response> document Twilio
executes.
"""
from dataclasses import dataclass, field
from typing import List, Union
from xml.etree import ElementTree as ET

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
VOICE = "Polly.Joanna"


@dataclass
class Say:
    """Speak text to the callee."""
    text: str
    voice: str = VOICE

    def to_element(self) -> ET.Element:
        element = ET.Element("Say", voice=self.voice)
        element.text = self.text
        return element


@dataclass
class Pause:
    length: int = 1

    def to_element(self) -> ET.Element:
        return ET.Element("Pause", length=str(self.length))


@dataclass
class Hangup:
    def to_element(self) -> ET.Element:
        return ET.Element("Hangup")


@dataclass
class Gather:
    """
    Collect keypad input while playing the nested verbs.

    Twilio posts the digits to `action`; with no input it falls through
    to the verbs that follow the Gather.
    """
    action: str
    children: List[Union[Say, Pause]] = field(default_factory=list)
    num_digits: int = 1
    timeout: int = 10
    method: str = "POST"

    def to_element(self) -> ET.Element:
        element = ET.Element(
            "Gather",
            action=self.action,
            method=self.method,
            numDigits=str(self.num_digits),
            timeout=str(self.timeout),
        )
        for child in self.children:
            element.append(child.to_element())
        return element


Verb = Union[Say, Pause, Hangup, Gather]


@dataclass
class VoiceScript:
    """An ordered list of verbs."""
    verbs: List[Verb] = field(default_factory=list)

    def say(self, text: str) -> "VoiceScript":
        self.verbs.append(Say(text))
        return self

    def add(self, verb: Verb) -> "VoiceScript":
        self.verbs.append(verb)
        return self

    def hangup(self) -> "VoiceScript":
        self.verbs.append(Hangup())
        return self

    def render(self) -> str:
        """Render the TwiML document. Text and attributes are XML-escaped."""
        root = ET.Element("Response")
        for verb in self.verbs:
            root.append(verb.to_element())
        return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def empty_response() -> str:
    """Acknowledge a callback without instructions."""
    return VoiceScript().render()
