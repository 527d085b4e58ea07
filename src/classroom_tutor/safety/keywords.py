"""
Phrase lists for the keyword safety classifier.

The crisis categories (self harm, abuse, bullying, depression, family issues)
are complete. The relationship, substance and sexual-content lists keep only
phrases that are unambiguous in a classroom; single everyday words such as
"party", "college" or "come" are left out because whole-phrase matching would
flag routine schoolwork.
"""

from classroom_tutor.safety.types import ConcernType

SELF_HARM = [
    "hate myself", "don't want to live", "don't want to be alive", "don't want to be here",
    "don't want to exist", "not worth going on", "no point in living", "no point going on",
    "rather be dead", "should end it", "should end it all", "end it all", "take my own life",
    "take my life", "harming myself", "harm myself", "hurting myself", "cut myself",
    "cutting myself", "disappear forever", "everyone better off without me",
    "they'd be better off without me", "they would be better off without me",
    "leave this world", "escape this world", "stop existing", "tired of being alive",
    "tired of existing", "too much pain", "can't take it anymore", "life is too hard",
    "life isn't worth it", "never wake up", "wish i wouldn't wake up", "make the pain stop",
    "no hope left", "nowhere to turn", "plan to kill", "easier if i wasn't here",
    "easier if i was gone", "want to die", "wanna die", "kill myself", "suicidal",
]

ABUSE = [
    "hurt me", "hurting me", "hitting me", "hit by", "kicks me", "kicking me", "pushes me",
    "throws things at me", "threw things at me", "threw something at me", "yells at me",
    "yelling at me", "screams at me", "screaming at me", "threatens me", "threatening me",
    "controls me", "controlling me", "locked me in", "locks me in", "touches me", "touched me",
    "uncomfortable touching", "hurt by someone", "afraid of them", "afraid to go home",
    "scared to go home", "not safe at home", "don't feel safe around", "punishes me unfairly",
    "treats me badly", "calls me stupid", "calls me worthless", "makes me feel worthless",
    "punched me", "punches me", "slapped me", "slaps me", "bruises from", "left bruises",
    "threatened to hurt me if i told", "can't tell anyone",
]

BULLYING = [
    "bullied", "bully", "bullying", "they hate me", "everyone hates me", "laughed at me",
    "laugh at me", "leave me out", "leaving me out", "no friends", "don't have friends",
    "nobody likes me", "no one likes me", "call me names", "called me names", "push me around",
    "pushed me", "shove me", "shoved me", "threatened me", "online bullying", "cyberbullying",
    "posting about me", "spreading rumors", "spreading rumours", "spreading lies",
    "everyone talks about me", "made fun of", "mock me", "mocking me", "rejected by everyone",
    "being isolated", "no one talks to me", "nobody talks to me", "they ignore me",
    "everyone ignores me", "being targeted", "pick on me", "won't leave me alone",
    "always after me", "ganging up on me", "scared to go to school",
    "don't want to go to school", "afraid at school", "scared at school",
]

DEPRESSION = [
    "hate my life", "no one cares", "nobody cares", "nobody loves me", "no one loves me",
    "feel empty", "feeling empty", "feel nothing", "feels like nothing matters",
    "nothing matters", "feel worthless", "feeling worthless", "don't feel anything",
    "can't see a future", "lost all hope", "lost hope", "feel like a failure", "am a failure",
    "everything is dark", "darkness closing in", "can't get out of bed", "can't face the day",
    "crying all the time", "crying myself to sleep", "never happy", "always feeling down",
    "feel so alone", "completely alone", "don't enjoy anything", "nothing makes me happy",
    "too sad to function", "too sad to do anything", "life is meaningless",
    "unable to feel joy", "exhausted all the time", "overwhelmed by sadness",
    "drowning in sadness", "feeling very sad", "feel very sad", "so sad", "really sad",
    "feeling sad", "feel sad", "lonely", "feeling lonely", "feel lonely", "so lonely",
    "feeling alone", "very lonely", "sad and lonely",
]

FAMILY_ISSUES = [
    "parents always fighting", "parents always argue", "parents hate each other",
    "home is not safe", "scared at home", "afraid at home", "can't stand being home",
    "hate being home", "might get kicked out", "might be kicked out",
    "threatened to kick me out", "parent drinking", "parent drunk", "parents drunk",
    "parents using drugs", "parent using drugs", "not enough food", "going hungry",
    "no food at home", "can't sleep at home", "parents separated", "parents separating",
    "parents broke up", "parents splitting up", "losing our house", "lost our house",
    "might be homeless", "could be homeless", "parent lost job", "parent in jail",
    "parent arrested", "no one takes care of me", "have to take care of myself",
    "have to take care of my siblings", "parent is sick", "parent is ill",
    "parent in hospital", "no electricity", "utilities shut off", "water shut off",
]

AGE_INAPPROPRIATE_RELATIONSHIP = [
    "like older", "likes older", "like an adult", "like a grown", "dating older", "date older",
    "boyfriend older", "girlfriend older", "adult boyfriend", "adult girlfriend",
    "relationship with older", "relationship with adult", "seeing someone older",
    "seeing an adult", "in love with older", "in love with adult", "crush on older",
    "crush on adult", "teacher i like", "coach i like", "tutor i like", "met online",
    "met on internet", "wants to meet", "asking for photos", "send photos", "keep it secret",
    "our secret", "special relationship", "when parents away", "when no one home",
    "spend time alone",
] + [f"{pronoun} is {age}" for pronoun in ("he", "she") for age in range(18, 41)]

UNDERAGE_SUBSTANCE_USE = [
    "getting drunk", "got drunk", "been drinking", "drink alcohol", "tried alcohol",
    "trying alcohol", "first drink", "doing shots", "pregaming", "pre-gaming",
    "sneaking drinks", "sneak drinks", "parents liquor", "parents alcohol", "liquor cabinet",
    "fake id", "underage drinking", "drunk at party", "blacked out", "hungover",
    "smoking weed", "smoke weed", "tried weed", "trying weed", "getting high", "got high",
    "stoned", "vaping", "juul", "smoke cigarettes", "stealing pills", "parents pills",
    "sneaking out", "sneak out", "lying to parents", "fake sleepover", "make me drink",
    "make me smoke", "make me try", "everyone drinks", "everyone smokes",
]

SEXUAL_CONTENT = [
    "how to kiss", "make out", "making out", "french kiss", "french kissing", "oral sex",
    "anal sex", "sexual acts", "sexual experience", "lose my virginity", "losing virginity",
    "sexual positions", "sex positions", "how to have sex", "having sex", "getting laid",
    "hook up", "hooking up", "one night stand", "turn me on", "turns me on", "horny",
    "masturbate", "masturbation", "touching myself", "friends with benefits", "casual sex",
    "naked together", "get naked", "take off clothes", "nudes",
]

CONCERN_KEYWORDS: dict[ConcernType, list[str]] = {
    ConcernType.SELF_HARM: SELF_HARM,
    ConcernType.ABUSE: ABUSE,
    ConcernType.BULLYING: BULLYING,
    ConcernType.DEPRESSION: DEPRESSION,
    ConcernType.FAMILY_ISSUES: FAMILY_ISSUES,
    ConcernType.AGE_INAPPROPRIATE_RELATIONSHIP: AGE_INAPPROPRIATE_RELATIONSHIP,
    ConcernType.UNDERAGE_SUBSTANCE_USE: UNDERAGE_SUBSTANCE_USE,
    ConcernType.SEXUAL_CONTENT: SEXUAL_CONTENT,
}
