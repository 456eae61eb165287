ABSTRACT = "ABSTRACT"
""" 
This keyword is used for Documents (__collection_name__) to indicate a base class that is never stored
and does not need to be registered.
"""

AUTO = "AUTO_1234"
"""
This is used with Documents to derive __collection_name__ from the class name (see collection_name()).
"""
