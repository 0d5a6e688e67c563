# Technical Indicators (calculation-only)


class ADX:
    """Average Directional Index (Wilder) - Trend Strength"""
    def __init__(self, period=14, threshold=25.0):
        self.period = period
        self.threshold = threshold
        self.reset()

    def reset(self):
        self.highs = []
        self.lows = []
        self.closes = []
        self.adx_values = []
        self._tr_seed = []
        self._plus_seed = []
        self._minus_seed = []
        self._dx_seed = []
        self._tr_smooth = None
        self._plus_smooth = None
        self._minus_smooth = None
        self.adx = None

    def add_candle(self, high, low, close):
        """Add candle and calculate ADX. Returns (adx, signal) or (None, None) while warming up."""
        self.highs.append(high)
        self.lows.append(low)
        self.closes.append(close)

        # Keep bounded history; only the previous candle is needed
        if len(self.closes) > self.period * 3:
            self.highs = self.highs[-2:]
            self.lows = self.lows[-2:]
            self.closes = self.closes[-2:]

        if len(self.closes) < 2:
            return None, None

        prev_high, prev_low, prev_close = self.highs[-2], self.lows[-2], self.closes[-2]

        up_move = high - prev_high
        down_move = prev_low - low
        plus_dm = up_move if (up_move > down_move and up_move > 0) else 0.0
        minus_dm = down_move if (down_move > up_move and down_move > 0) else 0.0
        tr = max(high - low, abs(high - prev_close), abs(low - prev_close))

        if self._tr_smooth is None:
            self._tr_seed.append(tr)
            self._plus_seed.append(plus_dm)
            self._minus_seed.append(minus_dm)
            if len(self._tr_seed) < self.period:
                return None, None
            self._tr_smooth = sum(self._tr_seed)
            self._plus_smooth = sum(self._plus_seed)
            self._minus_smooth = sum(self._minus_seed)
        else:
            self._tr_smooth = self._tr_smooth - self._tr_smooth / self.period + tr
            self._plus_smooth = self._plus_smooth - self._plus_smooth / self.period + plus_dm
            self._minus_smooth = self._minus_smooth - self._minus_smooth / self.period + minus_dm

        if self._tr_smooth <= 0:
            plus_di = minus_di = 0.0
        else:
            plus_di = 100.0 * self._plus_smooth / self._tr_smooth
            minus_di = 100.0 * self._minus_smooth / self._tr_smooth

        di_sum = plus_di + minus_di
        dx = 100.0 * abs(plus_di - minus_di) / di_sum if di_sum > 0 else 0.0

        if self.adx is None:
            self._dx_seed.append(dx)
            if len(self._dx_seed) < self.period:
                return None, None
            self.adx = sum(self._dx_seed) / self.period
        else:
            self.adx = (self.adx * (self.period - 1) + dx) / self.period

        self.adx_values.append(self.adx)
        if len(self.adx_values) > self.period * 3:
            self.adx_values = self.adx_values[-self.period:]

        # Signal: GREEN if trend is strong enough to trade, RED otherwise
        signal = "GREEN" if self.adx >= self.threshold else "RED"
        return self.adx, signal
