"""
Country-specific crisis helplines.

``get_helplines`` never returns an empty list: unknown or missing country
codes fall back to the DEFAULT entries.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_COUNTRY = "DEFAULT"

_ALIASES = {"UK": "GB", "UAE": "AE", "USA": "US"}


@dataclass(frozen=True)
class Helpline:
    name: str
    short_desc: str
    phone: Optional[str] = None
    website: Optional[str] = None
    text_to: Optional[str] = None
    text_msg: Optional[str] = None


HELPLINES: dict[str, list[Helpline]] = {
    "US": [
        Helpline("Childhelp USA", "Child abuse prevention & treatment", phone="1-800-422-4453", website="childhelp.org"),
        Helpline("National Suicide & Crisis Lifeline", "24/7 crisis support", phone="988", website="988lifeline.org"),
        Helpline("Crisis Text Line", "Text support for any crisis", text_to="741741", text_msg="HOME"),
        Helpline("The Trevor Project", "For LGBTQ youth", phone="1-866-488-7386", website="thetrevorproject.org"),
    ],
    "CA": [
        Helpline("Kids Help Phone", "24/7 youth support (text CONNECT to 686868)", phone="1-800-668-6868", website="kidshelpphone.ca"),
        Helpline("Talk Suicide Canada", "Suicide prevention & support (text 45645)", phone="1-833-456-4566", website="talksuicide.ca"),
        Helpline("Canadian Centre for Child Protection", "Child safety resources", website="protectchildren.ca"),
    ],
    "GB": [
        Helpline("Childline", "Support for children & young people", phone="0800 1111", website="childline.org.uk"),
        Helpline("NSPCC Helpline", "If you're worried about a child", phone="0808 800 5000", website="nspcc.org.uk"),
        Helpline("Samaritans", "Emotional support, 24/7", phone="116 123", website="samaritans.org"),
        Helpline("Papyrus HOPELINEUK", "Suicide prevention for under 35s", phone="0800 068 4141", website="papyrus-uk.org"),
    ],
    "IE": [
        Helpline("Childline (ISPCC)", "24/7 support for children (text 'LIST' to 50101)", phone="1800 66 66 66", website="childline.ie"),
        Helpline("Samaritans Ireland", "Emotional support, 24/7", phone="116 123", website="samaritans.org/ireland/"),
        Helpline("Pieta House", "Suicide & self-harm crisis centre (text HELP to 51444)", phone="1800 247247", website="pieta.ie"),
    ],
    "FR": [
        Helpline("Allo Enfance en Danger", "National child protection helpline (24/7)", phone="119", website="allo119.gouv.fr"),
        Helpline("Suicide Écoute", "Suicide prevention helpline", phone="01 45 39 40 00", website="suicide-ecoute.fr"),
        Helpline("Net Ecoute (e-Enfance)", "Protection for children online (cyberbullying, etc.)", phone="3018", website="e-enfance.org/numero-3018/"),
    ],
    "ES": [
        Helpline("ANAR (Ayuda a Niños y Adolescentes en Riesgo)", "Help for children & adolescents at risk (24/7)", phone="900 20 20 10", website="anar.org"),
        Helpline("Teléfono de la Esperanza", "Crisis support line", phone="717 003 717", website="telefonodelaesperanza.org"),
    ],
    "IT": [
        Helpline("Telefono Azzurro", "Child helpline (24/7)", phone="19696", website="azzurro.it"),
        Helpline("Telefono Amico Italia", "Emotional support helpline (check hours)", phone="02 2327 2327", website="telefonoamico.it"),
    ],
    "PT": [
        Helpline("SOS Criança (IAC)", "Child helpline (check hours)", phone="116 111", website="iacrianca.pt"),
        Helpline("Voz de Apoio", "Emotional support helpline (check hours)", phone="225 50 60 70", website="vozdeapoio.pt"),
    ],
    "DE": [
        Helpline("Nummer gegen Kummer (Kinder- und Jugendtelefon)", "Helpline for children & youth (Mon-Sat)", phone="116 111", website="nummergegenkummer.de"),
        Helpline("TelefonSeelsorge", "Crisis support (24/7)", phone="0800 111 0 111", website="telefonseelsorge.de"),
    ],
    "GR": [
        Helpline("The Smile of the Child (National Helpline for Children SOS)", "Child helpline (24/7)", phone="1056", website="hamogelo.gr"),
        Helpline("KLIMAKA (Suicide Prevention)", "24/7 suicide prevention line", phone="1018", website="klimaka.org.gr"),
    ],
    "AU": [
        Helpline("Kids Helpline", "Counselling for young people 5-25 (24/7)", phone="1800 55 1800", website="kidshelpline.com.au"),
        Helpline("Lifeline Australia", "24/7 crisis support & suicide prevention", phone="13 11 14", website="lifeline.org.au"),
        Helpline("eSafety Commissioner", "Online safety help & reporting", website="esafety.gov.au"),
    ],
    "AE": [
        Helpline("Child Protection Centre (Ministry of Interior)", "Child protection helpline", phone="116111", website="moi-cpc.ae"),
        Helpline("Dubai Foundation for Women and Children", "Support for women & children (violence/abuse)", phone="800111", website="dfwac.ae"),
    ],
    "MY": [
        Helpline("Buddy Bear Helpline", "Support helpline for children", phone="1-800-18-BEAR (2327)"),
        Helpline("PS The Children (Protect and Save The Children)", "Child protection services", phone="+603-7957 4344"),
    ],
    "NZ": [
        Helpline("Youthline", "24/7 service for young people 12-24 years", phone="0800 376 633", text_to="234", website="youthline.co.nz"),
        Helpline("What's Up", "Phone counseling for ages 5-18, 11am-11pm daily", phone="0800 942 8787", website="whatsup.co.nz"),
        Helpline("Kidsline", "New Zealand's only 24/7 helpline run by youth volunteers", phone="0800 54 37 54"),
        Helpline("1737 Need to Talk?", "Free national counseling service, call or text anytime", phone="1737", website="1737.org.nz"),
    ],
    DEFAULT_COUNTRY: [
        Helpline("Your Local Emergency Services", "Contact if in immediate danger (e.g., 911, 112, 999, 000)."),
        Helpline("A Trusted Adult", "Speak to a teacher, school counselor, parent, or another family member."),
        Helpline("Befrienders Worldwide", "Find a crisis support center in your region.", website="befrienders.org"),
    ],
}


def normalize_country_code(country_code: Optional[str]) -> str:
    if not country_code or not country_code.strip():
        return DEFAULT_COUNTRY
    code = country_code.strip().upper()
    return _ALIASES.get(code, code)


def get_helplines(country_code: Optional[str]) -> list[Helpline]:
    return HELPLINES.get(normalize_country_code(country_code)) or HELPLINES[DEFAULT_COUNTRY]


def format_helpline(helpline: Helpline) -> str:
    line = f"* {helpline.name}"
    if helpline.phone:
        line += f" - Phone: {helpline.phone}"
    elif helpline.text_to and helpline.text_msg:
        line += f" - Text: {helpline.text_msg} to {helpline.text_to}"
    elif helpline.website:
        line += f" - Website: {helpline.website}"
    if helpline.short_desc:
        line += f" ({helpline.short_desc})"
    return line


def format_helplines(country_code: Optional[str], limit: Optional[int] = None) -> str:
    helplines = get_helplines(country_code)
    if limit is not None:
        helplines = helplines[:limit]
    return "\n".join(format_helpline(h) for h in helplines)
