"""Synchronous push-based streams.

A `Stream` is cold: every subscription runs its own copy of the operator
pipeline, with its own state. A `Broadcast` is hot: values sent into it are
delivered, in subscription order, to every current subscriber before `send`
returns. Calling `.broadcast()` on a stream subscribes to it once and shares the
result, which is how the dashboard wires a graph whose nodes have several
readers.

Nothing here starts threads or buffers values.
"""
from typing import Any, Callable, Generic, Hashable, Iterable, List, TypeVar

T = TypeVar("T")
U = TypeVar("U")
K = TypeVar("K", bound=Hashable)

Observer = Callable[[Any], None]
Disposer = Callable[[], None]

_UNSET = object()


class Subscription:
    """Handle returned by `Stream.subscribe`; `dispose()` stops delivery"""
    def __init__(self, disposer: Disposer):
        self._disposer = disposer
        self.disposed = False

    def dispose(self):
        if not self.disposed:
            self.disposed = True
            self._disposer()


class Stream(Generic[T]):
    def __init__(self, on_subscribe: Callable[[Observer], Disposer]):
        self._on_subscribe = on_subscribe

    def subscribe(self, observer: Callable[[T], None]) -> Subscription:
        return Subscription(self._on_subscribe(observer))

    def map(self, f: Callable[[T], U]) -> "Stream[U]":
        return Stream(lambda observer: self._on_subscribe(lambda value: observer(f(value))))

    def filter(self, predicate: Callable[[T], bool]) -> "Stream[T]":
        def on_subscribe(observer):
            def on_value(value):
                if predicate(value):
                    observer(value)
            return self._on_subscribe(on_value)
        return Stream(on_subscribe)

    def inspect(self, f: Callable[[T], Any]) -> "Stream[T]":
        def on_subscribe(observer):
            def on_value(value):
                f(value)
                observer(value)
            return self._on_subscribe(on_value)
        return Stream(on_subscribe)

    def fold(self, seed: U, f: Callable[[U, T], U]) -> "Stream[U]":
        """Emit the accumulator after folding each value into it"""
        def on_subscribe(observer):
            acc = seed

            def on_value(value):
                nonlocal acc
                acc = f(acc, value)
                observer(acc)
            return self._on_subscribe(on_value)
        return Stream(on_subscribe)

    def distinct_until_changed(self) -> "Stream[T]":
        def on_subscribe(observer):
            last = _UNSET

            def on_value(value):
                nonlocal last
                if last is not _UNSET and last == value:
                    return
                last = value
                observer(value)
            return self._on_subscribe(on_value)
        return Stream(on_subscribe)

    def combine_latest(self, other: "Stream[U]", f: Callable[[T, U], Any]) -> "Stream":
        """Emit f(a, b) whenever either side emits, once both have emitted"""
        def on_subscribe(observer):
            latest = [_UNSET, _UNSET]

            def on_value(index):
                def receive(value):
                    latest[index] = value
                    if latest[0] is not _UNSET and latest[1] is not _UNSET:
                        observer(f(latest[0], latest[1]))
                return receive
            dispose_self = self._on_subscribe(on_value(0))
            dispose_other = other._on_subscribe(on_value(1))
            return _both(dispose_self, dispose_other)
        return Stream(on_subscribe)

    def with_latest_from(self, other: "Stream[U]", f: Callable[[T, U], Any]) -> "Stream":
        """Emit f(a, b) for each value a of this stream, sampling the latest b"""
        def on_subscribe(observer):
            latest = _UNSET

            def on_other(value):
                nonlocal latest
                latest = value

            def on_value(value):
                if latest is not _UNSET:
                    observer(f(value, latest))
            # subscribe to the sampled side first so a value emitted by a shared
            # upstream reaches it before it reaches this side
            dispose_other = other._on_subscribe(on_other)
            dispose_self = self._on_subscribe(on_value)
            return _both(dispose_self, dispose_other)
        return Stream(on_subscribe)

    def merge(self, other: "Stream[T]") -> "Stream[T]":
        def on_subscribe(observer):
            return _both(self._on_subscribe(observer), other._on_subscribe(observer))
        return Stream(on_subscribe)

    def group_by(self, key_fn: Callable[[T], K], value_fn: Callable[[T], U] = lambda value: value) -> "Stream[Grouped[K, U]]":
        """Split into one `Grouped` broadcast per key.

        A group is emitted the first time its key is seen, before the value that
        opened it is sent into it.
        """
        def on_subscribe(observer):
            groups = {}

            def on_value(value):
                key = key_fn(value)
                group = groups.get(key)
                if group is None:
                    group = groups[key] = Grouped(key)
                    observer(group)
                group.send(value_fn(value))
            return self._on_subscribe(on_value)
        return Stream(on_subscribe)

    def switch(self) -> "Stream":
        """Flatten a stream of streams, following only the most recent inner stream"""
        def on_subscribe(observer):
            inner = None

            def on_inner(stream):
                nonlocal inner
                if inner is not None:
                    inner.dispose()
                inner = stream.subscribe(observer)
            dispose_outer = self._on_subscribe(on_inner)

            def dispose():
                dispose_outer()
                if inner is not None:
                    inner.dispose()
            return dispose
        return Stream(on_subscribe)

    def broadcast(self) -> "Broadcast[T]":
        """Subscribe now and multicast everything this stream emits"""
        broadcast = Broadcast()
        broadcast.upstream = self.subscribe(broadcast.send)
        return broadcast


class Broadcast(Stream[T]):
    """Hot stream that can also be fed directly with `send`"""
    def __init__(self):
        super().__init__(self._add_observer)
        self._observers: List[Observer] = []
        self.upstream = None

    def _add_observer(self, observer: Observer) -> Disposer:
        # wrap so the same callable can be subscribed twice and removed once
        entry = lambda value: observer(value)  # noqa: E731
        self._observers.append(entry)

        def dispose():
            if entry in self._observers:
                self._observers.remove(entry)
        return dispose

    def send(self, value: T):
        for observer in list(self._observers):
            observer(value)

    def feed(self, values: Iterable[T]):
        for value in values:
            self.send(value)


class Grouped(Broadcast[T], Generic[K, T]):
    """Sub-stream produced by `group_by`, tagged with its key"""
    def __init__(self, key: K):
        super().__init__()
        self.key = key

    def __repr__(self) -> str:
        return f"Grouped(key={self.key!r})"


def _both(first: Disposer, second: Disposer) -> Disposer:
    def dispose():
        first()
        second()
    return dispose
