"""
Cluster colours.
"""
from typing import Dict

import numpy as np

# Used in order for the first clusters
CENTROID_COLOURS = ["blue", "red", "orange", "green", "yellow", "brown", "purple", "magenta", "cyan"]

NAMED_COLOURS = [
    "aqua", "blue", "blueviolet", "brown", "cadetblue", "chartreuse", "chocolate", "coral",
    "cornflowerblue", "crimson", "cyan", "darkblue", "darkcyan", "darkgoldenrod", "darkgrey",
    "darkgreen", "darkmagenta", "darkolivegreen", "darkorange", "darkorchid", "darkred",
    "darksalmon", "darkseagreen", "darkslateblue", "darkslategrey", "darkturquoise", "darkviolet",
    "deeppink", "deepskyblue", "dimgrey", "dodgerblue", "firebrick", "forestgreen", "fuchsia",
    "gold", "goldenrod", "grey", "green", "greenyellow", "hotpink", "indianred", "indigo", "khaki",
    "lawngreen", "lightblue", "lightcoral", "lightgreen", "lightpink", "lightsalmon",
    "lightseagreen", "lightskyblue", "lightslategrey", "lightsteelblue", "lime", "limegreen",
    "magenta", "maroon", "mediumaquamarine", "mediumblue", "mediumorchid", "mediumpurple",
    "mediumseagreen", "mediumslateblue", "mediumspringgreen", "mediumturquoise",
    "mediumvioletred", "midnightblue", "navy", "olive", "olivedrab", "orange", "orangered",
    "orchid", "palegreen", "paleturquoise", "palevioletred", "peru", "plum", "powderblue",
    "purple", "rebeccapurple", "red", "rosybrown", "royalblue", "saddlebrown", "salmon",
    "sandybrown", "seagreen", "sienna", "silver", "skyblue", "slateblue", "slategrey",
    "springgreen", "steelblue", "tan", "teal", "thistle", "tomato", "turquoise", "violet",
    "yellow", "yellowgreen",
]

SECONDARY_COLOURS = [c for c in NAMED_COLOURS if c not in CENTROID_COLOURS]


def assign_colours(k: int, rng: np.random.Generator) -> Dict[int, str]:
    """Colour per cluster number: palette first, then random secondary colours."""
    colours = {}
    for number in range(k):
        if number < len(CENTROID_COLOURS):
            colours[number] = CENTROID_COLOURS[number]
        else:
            colours[number] = SECONDARY_COLOURS[int(rng.integers(len(SECONDARY_COLOURS)))]
    return colours
