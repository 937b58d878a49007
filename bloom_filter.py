import hashlib
import math


def bloom_params(n, fp_rate):
    """
    computes (m_bits, k) for n items at the target false positive rate
    """
    if n <= 0:
        return 8, 1
    m = math.ceil(-n * math.log(fp_rate) / (math.log(2) ** 2))
    k = max(1, round((m / n) * math.log(2)))
    return m, k


class BloomFilter:
    """
    Bloom filter over hash strings.

    test() can return a false positive (at roughly the rate it was sized for)
    but never a false negative, so a negative answer is final.
    """

    def __init__(self, m_bits, k):
        self.m_bits = m_bits
        self.k = k
        self.count = 0
        self._bits = bytearray((m_bits + 7) // 8)

    @classmethod
    def from_items(cls, items, fp_rate):
        items = list(items)
        m_bits, k = bloom_params(len(items), fp_rate)
        bloom = cls(m_bits, k)
        for item in items:
            bloom.add(item)
        return bloom

    @property
    def size_bytes(self):
        return len(self._bits)

    def add(self, item):
        for bit in self._positions(item):
            self._bits[bit >> 3] |= (1 << (bit & 7))
        self.count += 1

    def test(self, item):
        for bit in self._positions(item):
            if not self._bits[bit >> 3] & (1 << (bit & 7)):
                return False
        return True

    __contains__ = test

    def _positions(self, item):
        # double hashing: bit_j = h1 + j * h2
        digest = hashlib.blake2b(item.encode("utf-8"), digest_size=16, person=b"sigscan-bloom").digest()
        h1 = int.from_bytes(digest[:8], "big")
        h2 = int.from_bytes(digest[8:], "big") | 1
        for j in range(self.k):
            yield (h1 + j * h2) % self.m_bits
