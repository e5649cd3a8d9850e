import numpy as np


def _average(values, weights=None):
    if weights is None:
        return float(np.mean(values))
    return float(np.sum(values * weights) / np.sum(weights))


def mse(y_pred, y_true, weights=None):
    return _average((y_pred - y_true) ** 2, weights)


def mae(y_pred, y_true, weights=None):
    return _average(np.abs(y_pred - y_true), weights)


def huber(y_pred, y_true, weights=None, delta=1.0):
    diff = np.abs(y_pred - y_true)
    quadratic = np.minimum(diff, delta)
    return _average(0.5 * quadratic ** 2 + delta * (diff - quadratic), weights)


LOSSES = dict(mse=mse, l2=mse, mae=mae, l1=mae, huber=huber)
