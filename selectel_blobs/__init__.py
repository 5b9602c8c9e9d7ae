from .services import *
