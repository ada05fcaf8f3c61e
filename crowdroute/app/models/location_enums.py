"""
Location-related enumerations.
"""

import enum


class LocationType(str, enum.Enum):
    """Category of a point-located entity."""
    BUS_STOP = "bus_stop"
    MOTOR_PARK = "motor_park"
    TRAIN_STATION = "train_station"
    TAXI_STAND = "taxi_stand"
    MARKET = "market"
    SCHOOL = "school"
    HOSPITAL = "hospital"
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    LANDMARK = "landmark"
    OTHER = "other"


class NigerianState(str, enum.Enum):
    """The 36 states plus the Federal Capital Territory."""
    ABIA = "Abia"
    ADAMAWA = "Adamawa"
    AKWA_IBOM = "Akwa Ibom"
    ANAMBRA = "Anambra"
    BAUCHI = "Bauchi"
    BAYELSA = "Bayelsa"
    BENUE = "Benue"
    BORNO = "Borno"
    CROSS_RIVER = "Cross River"
    DELTA = "Delta"
    EBONYI = "Ebonyi"
    EDO = "Edo"
    EKITI = "Ekiti"
    ENUGU = "Enugu"
    FCT = "FCT"
    GOMBE = "Gombe"
    IMO = "Imo"
    JIGAWA = "Jigawa"
    KADUNA = "Kaduna"
    KANO = "Kano"
    KATSINA = "Katsina"
    KEBBI = "Kebbi"
    KOGI = "Kogi"
    KWARA = "Kwara"
    LAGOS = "Lagos"
    NASARAWA = "Nasarawa"
    NIGER = "Niger"
    OGUN = "Ogun"
    ONDO = "Ondo"
    OSUN = "Osun"
    OYO = "Oyo"
    PLATEAU = "Plateau"
    RIVERS = "Rivers"
    SOKOTO = "Sokoto"
    TARABA = "Taraba"
    YOBE = "Yobe"
    ZAMFARA = "Zamfara"
