#!/usr/bin/env python3
import sys
sys.stdout.reconfigure(line_buffering=True)

from myimage import load_grayscale
from pixapprox import ApproxConfig, PixelApproximator

if __name__ == "__main__":
    image = sys.argv[1] if len(sys.argv) > 1 else 'images/mona_lisa_small.png'
    pop = int(sys.argv[2]) if len(sys.argv) > 2 else 70
    gen = int(sys.argv[3]) if len(sys.argv) > 3 else 15000

    print(f'Running GP on {image} with pop={pop}, gen={gen}', flush=True)
    approx = PixelApproximator(
        load_grayscale(image),
        ApproxConfig(population_size=pop, generations=gen),
        output_dir='result',
    )
    best, error = approx.run()
    print(f'\nFinal: {error:,.0f} error', flush=True)
    approx.save_results('result/pixapprox_results.json')
    print('Saved to result/pixapprox_results.json', flush=True)
