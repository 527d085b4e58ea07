"""
Student-facing texts for blocks and safety interventions.

Redirects are kind and non-punitive; safety messages never engage with the
topic the student raised and always point to a trusted adult and helplines.
"""

import random
import re
from typing import Optional

from classroom_tutor.safety.helplines import get_helplines, format_helpline
from classroom_tutor.safety.types import ConcernType, Severity

CONTENT_FILTER_MESSAGES = {
    "phone_number": "I noticed you tried to share a phone number. To keep you safe online, I can't process messages with personal contact information. Let's focus on your learning instead! 📱➡️📚",
    "email_address": "Oops! Looks like you included an email address. For your safety, I can't accept personal contact details. What subject would you like help with today? 📧➡️🎓",
    "physical_address": "Hold on! I spotted what looks like an address. Your safety is important, so please don't share location details online. How can I help with your studies? 🏠➡️📖",
    "social_media": "I see you mentioned social media! While those platforms can be fun, let's keep our focus here on learning. What topic are you working on? 💬➡️🧠",
    "age_information": "Thanks for sharing, but I don't need to know personal details like your age. I'm here to help you learn, no matter what! What questions do you have? 🎂➡️❓",
    "school_name": "I noticed you mentioned a specific school. For privacy, let's keep those details private. What subject can I help you with? 🏫➡️📚",
    "teacher_name": "You mentioned a teacher's name - let's keep their privacy protected too! What are you learning about in class? 👩‍🏫➡️📝",
    "location_information": "Whoops! That looked like location information. Stay safe by keeping where you are private. What would you like to learn about instead? 📍➡️🌟",
    "personal_info_default": "I noticed you tried to share some personal information. To keep you safe online, I can't process messages with personal details. Let's focus on learning together! 🛡️📚",
}

MODERATION_MESSAGES = {
    "general_inappropriate": "Hey there! Let's keep our conversation positive and focused on learning. I'm here to help you with your studies - please try rephrasing your question in a respectful way. 📚✨",
    "jailbreak": "I see you're trying to test my boundaries! 🤖 I'm designed to be your learning assistant, so let's stick to educational topics. What subject would you like help with today?",
    "jailbreak_creative": "Nice try! You're clearly creative and curious - let's channel that energy into learning something amazing! What topic interests you most? 🎨🧪",
    "harassment": "Let's be kind to each other! 💙 This is a space for learning and growing together. I'm here to help with your studies - what would you like to learn about?",
    "bullying": "Hey, words can hurt! Let's create a positive learning environment for everyone. I'm here to help you succeed - what can we work on together? 🤝📖",
    "hate_speech": "Whoa there! Everyone deserves respect, no matter their differences. Let's focus on what brings us together - learning! What subject interests you? 🌈📚",
    "high_severity": "That message contained some content we can't allow here. Remember, this is a safe learning space for everyone. Your teacher has been notified, but you can still ask me educational questions! 🛡️",
    "homework_cheating": "I can help you understand your homework, but I can't do it for you! Learning happens when YOU work through problems. What part are you stuck on? Let's figure it out together! 💪📝",
    "test_cheating": "Tests are your chance to show what you've learned! I can help you study and understand concepts, but the answers need to come from you. What topic should we review? 🎯📖",
    "violence_general": "Let's keep things peaceful here! Violence isn't the answer. How about we channel that energy into learning something cool instead? 🕊️✨",
    "sexual_content": "I'm here to help you with your studies, not discuss topics like that. 📚 If you have questions about health or relationships, it's best to talk with a trusted adult like a parent, teacher, or school counselor. What subject can I help you learn about today?",
}

# Checked in order; the first reason keyword present selects the message.
_FILTER_REASON_MESSAGES = [
    (re.compile(r"\bsexual\b|\binappropriate content\b"), MODERATION_MESSAGES["sexual_content"]),
    (re.compile(r"\bphone\b"), CONTENT_FILTER_MESSAGES["phone_number"]),
    (re.compile(r"\bemail\b"), CONTENT_FILTER_MESSAGES["email_address"]),
    (re.compile(r"\baddress\b"), CONTENT_FILTER_MESSAGES["physical_address"]),
    (re.compile(r"\bsocial media\b"), CONTENT_FILTER_MESSAGES["social_media"]),
    (re.compile(r"\bage\b"), CONTENT_FILTER_MESSAGES["age_information"]),
    (re.compile(r"\bschool name\b"), CONTENT_FILTER_MESSAGES["school_name"]),
    (re.compile(r"\bteacher name\b"), CONTENT_FILTER_MESSAGES["teacher_name"]),
    (re.compile(r"\blocation\b"), CONTENT_FILTER_MESSAGES["location_information"]),
]

SAFETY_INTROS = {
    ConcernType.SELF_HARM: "Your safety is important. Please speak with your teacher or use these helplines for support:",
    ConcernType.BULLYING: "It's important to talk to a trusted adult about this. Here are some resources that can help:",
    ConcernType.ABUSE: "Your safety matters. Please speak with your teacher or contact these helplines:",
    ConcernType.DEPRESSION: "Support is available. Please talk to your teacher or use these resources:",
    ConcernType.FAMILY_ISSUES: "Please speak with your teacher or school counselor. These resources can also help:",
    ConcernType.AGE_INAPPROPRIATE_RELATIONSHIP: "Your safety is important. Please speak with your teacher or parent right away. These helplines can also help:",
    ConcernType.UNDERAGE_SUBSTANCE_USE: "It's important to talk to a trusted adult. Your teacher can help, and here are some resources:",
}
DEFAULT_SAFETY_INTRO = "I see you may need support. Your teacher can see this conversation and these helplines can help:"

TEACHER_AWARENESS = (
    "Your teacher can see this conversation and will follow up to make sure you get the support you need."
)
SAFETY_CLOSING = "Help is available."


def kind_filter_message(reason: Optional[str]) -> str:
    """Pick the redirect text for a content-filter block."""
    text = (reason or "").lower()
    for pattern, message in _FILTER_REASON_MESSAGES:
        if pattern.search(text):
            return message
    return CONTENT_FILTER_MESSAGES["personal_info_default"]


def kind_moderation_message(
    categories: list[str],
    severity: Severity,
    jailbreak_detected: bool,
    rng: Optional[random.Random] = None,
) -> str:
    """Pick the redirect text for a moderation block."""
    rng = rng or random.Random()

    def either(first: str, second: str) -> str:
        return MODERATION_MESSAGES[first] if rng.random() > 0.5 else MODERATION_MESSAGES[second]

    if jailbreak_detected:
        return either("jailbreak", "jailbreak_creative")
    if severity == Severity.HIGH:
        return MODERATION_MESSAGES["high_severity"]
    if {"sexual", "sexual/minors", "sexual_content"} & set(categories):
        return MODERATION_MESSAGES["sexual_content"]
    if "harassment" in categories:
        return either("harassment", "bullying")
    if "hate" in categories:
        return MODERATION_MESSAGES["hate_speech"]
    if "violence" in categories:
        return MODERATION_MESSAGES["violence_general"]
    if "academic_cheating" in categories:
        return either("homework_cheating", "test_cheating")
    return MODERATION_MESSAGES["general_inappropriate"]


def safety_response_message(
    concern_type: Optional[ConcernType],
    country_code: Optional[str],
    intro: Optional[str] = None,
) -> str:
    """Intro, teacher-awareness line, helpline list and closing."""
    if intro is None:
        intro = SAFETY_INTROS.get(concern_type, DEFAULT_SAFETY_INTRO) if concern_type else DEFAULT_SAFETY_INTRO
    helplines = "".join(f"{format_helpline(h)}\n" for h in get_helplines(country_code))
    return f"{intro} {TEACHER_AWARENESS}\n\n{helplines}\n{SAFETY_CLOSING}"
