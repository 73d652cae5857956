import numpy as np
from numpy.typing import NDArray

VecFloat = NDArray[np.float64]
VecInt = NDArray[np.int64]
