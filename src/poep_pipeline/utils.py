"""
Utility functions and decorators for the PoEP pipeline.

Timing and retry decorators, safe division for degenerate images and a
small hashing helper shared by the fingerprint and anchor modules.
"""

import time
import hashlib
import functools
from typing import Any, Callable, TypeVar, Union
import structlog

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Type variable for generic decorators
F = TypeVar("F", bound=Callable[..., Any])


def timer(func: F) -> F:
    """
    Decorator to measure and log function execution time.

    Parameters
    ----------
    func : Callable
        Function to be timed.

    Returns
    -------
    Callable
        Wrapped function with timing capability.

    Examples
    --------
    >>> @timer
    ... def slow_function():
    ...     time.sleep(1)
    ...     return "done"
    >>> result = slow_function()  # Logs execution time
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)
            execution_time = (time.perf_counter() - start_time) * 1000

            logger.debug(
                "Function execution completed",
                function_name=func.__name__,
                module=func.__module__,
                execution_time_ms=execution_time,
                success=True,
            )

            return result

        except Exception as e:
            execution_time = (time.perf_counter() - start_time) * 1000

            logger.error(
                "Function execution failed",
                function_name=func.__name__,
                module=func.__module__,
                execution_time_ms=execution_time,
                error=str(e),
                error_type=type(e).__name__,
                success=False,
            )

            raise

    return wrapper


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
) -> Callable[[F], F]:
    """
    Decorator to retry function execution on failure.

    Only collaborators with transient network failures use this; proof
    generation and verification are never retried inside the pipeline.

    Parameters
    ----------
    max_attempts : int, default=3
        Maximum number of attempts.
    delay : float, default=1.0
        Initial delay between retries in seconds.
    backoff : float, default=2.0
        Backoff multiplier for delay.
    exceptions : tuple, default=(Exception,)
        Tuple of exception types to catch and retry.

    Returns
    -------
    Callable
        Decorator function.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt < max_attempts - 1:  # Don't sleep on last attempt
                        logger.warning(
                            f"Function {func.__name__} failed, retrying",
                            attempt=attempt + 1,
                            max_attempts=max_attempts,
                            delay_seconds=current_delay,
                            error=str(e),
                        )

                        time.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(
                            f"Function {func.__name__} failed after all retries",
                            total_attempts=max_attempts,
                            final_error=str(e),
                        )

            raise last_exception

        return wrapper

    return decorator


def hash_data(data: Union[str, bytes], algorithm: str = "sha256") -> str:
    """
    Generate the hexadecimal digest of data.

    Parameters
    ----------
    data : Union[str, bytes]
        Data to hash; strings are UTF-8 encoded.
    algorithm : str, default="sha256"
        Hashing algorithm to use.

    Returns
    -------
    str
        Hexadecimal hash string.

    Raises
    ------
    ValueError
        If algorithm is not supported.
    """
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    if isinstance(data, str):
        data = data.encode("utf-8")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Perform safe division with default value for zero denominator.

    Examples
    --------
    >>> safe_divide(10, 2)
    5.0
    >>> safe_divide(10, 0)
    0.0
    """
    if denominator == 0:
        return default
    return numerator / denominator
