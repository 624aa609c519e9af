import logging
import os
import sys
import numpy as np


class Struct(object):
    """
    A dictionary-like data structure where fields are accessible as both
    attributes and dictionary keys::

        >>> s = Struct()
        >>> s['T'] = np.array([300.0, 2200.0])
        >>> s.T
        array([  300.,  2200.])
        >>> s.mdot = 0.45
        >>> 'mdot' in s
        True

    Valid methods of initialization, equivalent to the above:

        >>> s = Struct(T=np.array([300.0, 2200.0]), mdot=0.45)
        >>> s = Struct({'T': np.array([300.0, 2200.0]), 'mdot': 0.45})

    """
    def __init__(self, *args, **kwargs):
        for arg in args:
            if hasattr(arg,'items'):
                for k,v in arg.items():
                    self[k] = v

        for k,v in kwargs.items():
            self[k] = v

    def __getitem__(self, key):
        return getattr(self, key, None)

    def __setitem__(self, key, value):
        setattr(self, key, value)

    def __delitem__(self, key):
        delattr(self, key)

    def __contains__(self, key):
        return (key in self.__dict__)

    def __repr__(self):
        return 'Struct(%s)' % ', '.join(sorted(self.__dict__))

    def keys(self):
        return self.__dict__.keys()

    def values(self):
        return self.__dict__.values()

    def items(self):
        return self.__dict__.items()


class HDFStruct(Struct):
    """
    Like :class:`Struct`, but converts HDF5 datasets to numpy arrays.
    """
    def __init__(self, filename):
        import h5py
        if not os.path.exists(filename):
            raise IOError("File not found: " + filename)
        with h5py.File(filename, mode='r') as data:
            for key in data:
                self[key] = data[key][()]


class NpzStruct(Struct):
    """
    Like :class:`Struct`, but loads data from NumPy 'npz' data files
    """
    def __init__(self, filename):
        if not os.path.exists(filename):
            raise IOError("File not found: " + filename)
        with np.load(filename) as data:
            for k,v in data.items():
                self[k] = v


def load(filename):
    """
    Generate a :class:`Struct` object from a saved solution snapshot.
    """
    if filename.endswith('h5'):
        return HDFStruct(filename)
    elif filename.endswith('npz'):
        return NpzStruct(filename)
    else:
        raise ValueError("Unknown file format for file '{0}'."
                         " Expected one of: ('h5', 'npz')".format(filename))


def decodeNames(names):
    """
    Convert an array of species names read from a snapshot (stored as bytes)
    to a list of strings.
    """
    return [n.decode() if isinstance(n, bytes) else str(n) for n in names]


def setupLogging(logFile=None, loglevel=1):
    """
    Route the messages of the ``ionflame`` loggers to *logFile*, or to
    stdout if *logFile* is *None*.

    :param loglevel:
        0 shows only warnings and errors, 1 adds progress messages for each
        solve, and 2 or more adds details of every Newton iteration.
    """
    if loglevel <= 0:
        level = logging.WARNING
    elif loglevel == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger = logging.getLogger('ionflame')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if logFile:
        dirname = os.path.dirname(logFile)
        if dirname and not os.path.exists(dirname):
            os.makedirs(dirname)
        handler = logging.FileHandler(logFile, mode='w')
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
