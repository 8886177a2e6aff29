from enum import Enum


class StudentStatus(str, Enum):
    studying = "studying"
    completed = "completed"
    discontinued = "discontinued"


class Gender(str, Enum):
    male = "male"
    female = "female"


class CyclePhase(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    FUTURE = "future"


class ChangeType(str, Enum):
    CREATED = "created"
    START_STUDIES = "start_studies"
    FIELD_UPDATE = "field_update"
    LOCATION_CHANGE = "location_change"
    DELETED = "deleted"
